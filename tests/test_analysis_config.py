import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.ai.prompts import DEFAULT_PROFILE, build_model_profiles, resolve_profile  # noqa: E402
from app.core.config import get_analysis_config, get_analysis_config_value, load_yaml_mapping  # noqa: E402


class AnalysisConfigTests(unittest.TestCase):
    def test_loader_and_value_lookup(self):
        config = get_analysis_config()
        self.assertIsInstance(config, dict)
        self.assertEqual(get_analysis_config_value("max_output_tokens"), 4000)
        self.assertEqual(get_analysis_config_value("truncation.limits.skills"), 1500)
        self.assertEqual(get_analysis_config_value("scoring.defensive_ats_score"), 60)
        self.assertEqual(get_analysis_config_value("scoring.missing.key", "fallback"), "fallback")

    def test_yaml_loader_handles_missing_empty_and_invalid_files(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "empty.yaml").write_text("", encoding="utf-8")
            (root / "list.yaml").write_text("- a\n- b\n", encoding="utf-8")
            (root / "broken.yaml").write_text("key: [unclosed\n", encoding="utf-8")

            self.assertEqual(load_yaml_mapping(root / "missing.yaml"), {})
            self.assertEqual(load_yaml_mapping(root / "empty.yaml"), {})
            with self.assertRaises(RuntimeError):
                load_yaml_mapping(root / "list.yaml")
            with self.assertRaises(RuntimeError):
                load_yaml_mapping(root / "broken.yaml")

    def test_families_resolve_by_model_substring(self):
        profiles = build_model_profiles(get_analysis_config_value("families"))

        deepseek = resolve_profile("deepseek/deepseek-v3-base:free", profiles)
        llama = resolve_profile("meta-llama/llama-4-maverick:free", profiles)
        unknown = resolve_profile("some-vendor/new-model", profiles)

        self.assertEqual(deepseek.family, "deepseek")
        self.assertEqual(deepseek.context_class, "low_context")
        self.assertLessEqual(deepseek.temperature, 0.4)
        self.assertGreaterEqual(deepseek.temperature, 0.2)
        self.assertEqual(llama.family, "llama")
        self.assertIs(unknown, DEFAULT_PROFILE)
        self.assertEqual(unknown.temperature, 0.5)

    def test_invalid_family_entries_are_skipped(self):
        profiles = build_model_profiles([{"name": ""}, "nope", {"name": "qwen", "temperature": "hot"}])

        self.assertEqual(len(profiles), 1)
        self.assertEqual(profiles[0].match, ("qwen",))
        self.assertEqual(profiles[0].temperature, 0.5)


if __name__ == "__main__":
    unittest.main()
