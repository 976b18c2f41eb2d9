import json
import os
import tempfile
import unittest
from pathlib import Path

from localui_config import (
    ConfigService,
    build_configuration,
    load_profile,
    load_ui_config,
    merge_dicts,
    resolve_profile_path,
)


def _write_json(path: Path, payload) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    text = payload if isinstance(payload, str) else json.dumps(payload)
    path.write_text(text, encoding="utf-8")


BUTTON_CONFIG = {
    "whitelist": ["echo", "date", "echo"],
    "elements": [{"id": "hello", "type": "button", "command": {"template": "echo hi"}}],
}


def _nested_groups(depth: int) -> dict:
    node = {"id": "leaf", "type": "button", "command": {"template": "echo hi"}}
    for level in range(depth):
        node = {"id": f"g{level}", "type": "group", "elements": [node]}
    return node


def _nested_groups_text(depth: int) -> str:
    leaf = '{"id": "leaf", "type": "button", "command": {"template": "echo hi"}}'
    opening = "".join(f'{{"id": "g{level}", "type": "group", "elements": [' for level in range(depth))
    return '{"whitelist": ["echo"], "elements": [' + opening + leaf + "]}" * depth + "]}"


class LoadUiConfigTests(unittest.TestCase):
    def test_primary_config_is_normalized(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "ui.json"
            _write_json(path, BUTTON_CONFIG)
            config, failure = load_ui_config(path)
            self.assertIsNone(failure)
            self.assertEqual(config.whitelist, ("echo", "date"))
            self.assertEqual(config.get_command("hello_button").template, "echo hi")
            self.assertIsNone(config.get_command("missing"))
            self.assertEqual(config.source, str(path))
            self.assertEqual(config.command_timeout_seconds, 120.0)

    def test_fallback_used_when_primary_is_absent(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            fallback = root / "ui.sample.json"
            _write_json(fallback, BUTTON_CONFIG)
            config, failure = load_ui_config(root / "ui.json", fallback)
            self.assertIsNone(failure)
            self.assertEqual(config.source, str(fallback))

    def test_no_documents_yields_base_config(self):
        with tempfile.TemporaryDirectory() as tmp:
            config, failure = load_ui_config(Path(tmp) / "ui.json", Path(tmp) / "ui.sample.json")
            self.assertIsNone(failure)
            self.assertEqual(config.elements, ())
            self.assertEqual(config.whitelist, ())
            self.assertEqual(config.globals["defaults"]["w"], 12)

    def test_malformed_json_is_a_parse_failure(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "ui.json"
            _write_json(path, "{not json")
            config, failure = load_ui_config(path)
            self.assertIsNone(config)
            self.assertEqual(failure.kind, "config_parse")

            _write_json(path, "[1, 2]")
            _, failure = load_ui_config(path)
            self.assertEqual(failure.kind, "config_parse")

    def test_rejects_unknown_root_key(self):
        _, failure = build_configuration({"elements": [], "unknownKey": True})
        self.assertEqual(failure.kind, "invalid_config")
        self.assertIn("unknownKey", failure.message)

    def test_allows_schema_metadata_keys(self):
        config, failure = build_configuration({"$schema": "./ui.schema.json", "x-note": "ok", "elements": []})
        self.assertIsNone(failure)
        self.assertEqual(config.elements, ())

    def test_whitelist_validation(self):
        _, failure = build_configuration({"whitelist": "echo"})
        self.assertEqual(failure.kind, "invalid_config")
        _, failure = build_configuration({"whitelist": ["echo", "  "]})
        self.assertEqual(failure.kind, "invalid_config")

    def test_command_timeout_setting(self):
        config, _ = build_configuration({"commandTimeoutSeconds": 5})
        self.assertEqual(config.command_timeout_seconds, 5.0)
        config, _ = build_configuration({"commandTimeoutSeconds": None})
        self.assertIsNone(config.command_timeout_seconds)
        config, _ = build_configuration({"commandTimeoutSeconds": 0})
        self.assertIsNone(config.command_timeout_seconds)
        _, failure = build_configuration({"commandTimeoutSeconds": "soon"})
        self.assertEqual(failure.kind, "invalid_config")

    def test_globals_merge_over_base(self):
        config, failure = build_configuration(
            {"globals": {"theme": {"palette": {"accent": "#000000"}}, "defaults": {"w": 3}}}
        )
        self.assertIsNone(failure)
        palette = config.globals["theme"]["palette"]
        self.assertEqual(palette["accent"], "#000000")
        self.assertEqual(palette["primary"], "#111827")
        self.assertEqual(config.globals["defaults"], {"w": 3, "h": 2, "classes": ""})

    def test_schema_errors_surface_from_load(self):
        _, failure = build_configuration(
            {"elements": [{"id": "a", "type": "button"}, {"id": "a", "type": "button"}]}
        )
        self.assertEqual(failure.kind, "duplicate_id")

    def test_commands_are_read_only(self):
        config, _ = build_configuration(BUTTON_CONFIG)
        with self.assertRaises(TypeError):
            config.commands["other"] = config.commands["hello_button"]

    def test_globals_are_read_only(self):
        config, _ = build_configuration({"globals": {"extra": {"items": [1, 2]}}})
        with self.assertRaises(TypeError):
            config.globals["theme"]["palette"]["accent"] = "#FFFFFF"
        with self.assertRaises(TypeError):
            config.globals["defaults"] = {}
        self.assertEqual(config.globals["extra"]["items"], (1, 2))

        payload = config.to_payload()
        payload["globals"]["theme"]["palette"]["accent"] = "#FFFFFF"
        payload["globals"]["extra"]["items"].append(3)
        self.assertEqual(config.globals["theme"]["palette"]["accent"], "#10B981")
        self.assertEqual(config.to_payload()["globals"]["extra"], {"items": [1, 2]})

    def test_moderately_nested_tree_loads(self):
        config, failure = build_configuration({"elements": [_nested_groups(40)]})
        self.assertIsNone(failure)
        self.assertEqual(config.element_count(), 41)
        self.assertIn("leaf_button", config.commands)

    def test_too_deeply_nested_tree_is_a_failure(self):
        config, failure = build_configuration({"elements": [_nested_groups(1000)]})
        self.assertIsNone(config)
        self.assertEqual(failure.kind, "invalid_config")
        self.assertIn("nested too deeply", failure.message)

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "ui.json"
            _write_json(path, _nested_groups_text(1000))
            config, failure = load_ui_config(path)
        self.assertIsNone(config)
        self.assertIn(failure.kind, ("invalid_config", "config_parse"))

    def test_service_reports_deep_tree_as_failure(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "ui.json"
            _write_json(path, _nested_groups_text(1000))
            config, failure = ConfigService(path).get()
        self.assertIsNone(config)
        self.assertIsNotNone(failure)

    def test_merge_dicts_does_not_mutate_inputs(self):
        base = {"a": {"b": 1}}
        merged = merge_dicts(base, {"a": {"c": 2}})
        self.assertEqual(merged, {"a": {"b": 1, "c": 2}})
        self.assertEqual(base, {"a": {"b": 1}})

    def test_sample_config_loads(self):
        repo_root = Path(__file__).resolve().parents[1]
        sample = repo_root / "config" / "ui.sample.json"
        self.assertTrue(sample.exists(), f"missing sample config: {sample}")
        config, failure = load_ui_config(sample)
        self.assertIsNone(failure)
        self.assertIn("volume_set", config.commands)
        self.assertIn("greeting_input", config.commands)
        self.assertEqual(config.command_timeout_seconds, 30.0)


class ConfigServiceTests(unittest.TestCase):
    def test_lazy_load_and_snapshot_swap(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "ui.json"
            _write_json(path, BUTTON_CONFIG)
            service = ConfigService(path)

            first, failure = service.get()
            self.assertIsNone(failure)
            again, _ = service.get()
            self.assertIs(first, again)

            _write_json(path, {"whitelist": ["date"], "elements": []})
            unchanged, _ = service.get()
            self.assertIs(unchanged, first)

            reloaded, failure = service.reload()
            self.assertIsNone(failure)
            self.assertIsNot(reloaded, first)
            self.assertEqual(reloaded.whitelist, ("date",))
            self.assertEqual(first.whitelist, ("echo", "date"))
            self.assertIsNotNone(first.get_command("hello_button"))

    def test_failed_reload_keeps_previous_snapshot(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "ui.json"
            _write_json(path, BUTTON_CONFIG)
            service = ConfigService(path)
            first, _ = service.get()

            _write_json(path, "{broken")
            reloaded, failure = service.reload()
            self.assertIsNone(reloaded)
            self.assertEqual(failure.kind, "config_parse")

            current, failure = service.get()
            self.assertIsNone(failure)
            self.assertIs(current, first)

    def test_initial_failure_is_retried(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "ui.json"
            _write_json(path, "{broken")
            service = ConfigService(path)
            _, failure = service.get()
            self.assertEqual(failure.kind, "config_parse")

            _write_json(path, BUTTON_CONFIG)
            config, failure = service.get()
            self.assertIsNone(failure)
            self.assertEqual(len(config.commands), 1)


class ProfileResolutionTests(unittest.TestCase):
    def test_resolves_and_appends_extension(self):
        with tempfile.TemporaryDirectory() as tmp:
            config_dir = Path(tmp)
            _write_json(config_dir / "profiles" / "lab.json", {"whitelist": ["echo"]})
            path, failure = resolve_profile_path(config_dir, "profiles/lab")
            self.assertIsNone(failure)
            self.assertEqual(path, (config_dir / "profiles" / "lab.json").resolve())

            payload, failure = load_profile(config_dir, "profiles/lab.json")
            self.assertIsNone(failure)
            self.assertEqual(payload, {"whitelist": ["echo"]})

    def test_rejects_traversal_and_bad_characters(self):
        with tempfile.TemporaryDirectory() as tmp:
            config_dir = Path(tmp)
            for name in ("../secret", "/etc/passwd", "a/../../b", "bad name", "semi;colon", ""):
                path, failure = resolve_profile_path(config_dir, name)
                self.assertIsNone(path, msg=name)
                self.assertEqual(failure.kind, "invalid_profile", msg=name)

    def test_missing_profile(self):
        with tempfile.TemporaryDirectory() as tmp:
            _, failure = resolve_profile_path(Path(tmp), "nope")
            self.assertEqual(failure.kind, "profile_not_found")

    @unittest.skipIf(os.name == "nt", "symlinks need privileges on windows")
    def test_symlink_escape_is_rejected(self):
        with tempfile.TemporaryDirectory() as config_tmp, tempfile.TemporaryDirectory() as outside_tmp:
            config_dir = Path(config_tmp)
            outside = Path(outside_tmp) / "secret.json"
            _write_json(outside, {"secret": True})
            (config_dir / "link.json").symlink_to(outside)
            path, failure = resolve_profile_path(config_dir, "link")
            self.assertIsNone(path)
            self.assertEqual(failure.kind, "invalid_profile")


if __name__ == "__main__":
    unittest.main()
