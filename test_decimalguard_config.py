#!/usr/bin/env python3
"""Tests for decimalguard configuration loading."""

import os
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from decimalguard_config import (
    ConfigurationError,
    DecimalGuardConfig,
    DEFAULT_FILE_GLOBS,
    DEFAULT_WATCHED_FUNCTIONS,
    load_config,
)


class ConfigTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = self.tmp.name

    def tearDown(self):
        self.tmp.cleanup()

    def write(self, rel: str, content: str) -> str:
        path = os.path.join(self.root, rel)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return path


class TestDefaults(unittest.TestCase):

    def test_defaults_are_valid(self):
        config = DecimalGuardConfig().validate()
        self.assertEqual(config.source_root, "src")
        self.assertEqual(config.watched_functions, DEFAULT_WATCHED_FUNCTIONS)
        self.assertEqual(config.file_globs, DEFAULT_FILE_GLOBS)
        self.assertFalse(config.fail_on_high)

    def test_overlapping_sets_rejected(self):
        config = DecimalGuardConfig(safe_conversion_functions=frozenset({"Number", "mulDecimals"}))
        with self.assertRaises(ConfigurationError) as ctx:
            config.validate()
        self.assertIn("mulDecimals", str(ctx.exception))

    def test_empty_watched_set_rejected(self):
        with self.assertRaises(ConfigurationError):
            DecimalGuardConfig(watched_functions=frozenset()).validate()

    def test_file_globs(self):
        config = DecimalGuardConfig()
        self.assertTrue(config.matches_file("Price.tsx"))
        self.assertTrue(config.matches_file("util.js"))
        self.assertFalse(config.matches_file("util.mjs"))
        self.assertFalse(config.matches_file("README.md"))

    def test_dependency_dirs_always_excluded(self):
        config = DecimalGuardConfig()
        self.assertTrue(config.should_exclude("node_modules/lib/index.js"))
        self.assertTrue(config.should_exclude("packages/app/dist/main.js"))
        self.assertTrue(config.should_exclude("build"))
        self.assertFalse(config.should_exclude("components/Price.tsx"))

    def test_exclude_globs(self):
        config = DecimalGuardConfig(exclude_globs=["__generated__", "**/*.stories.tsx", "legacy/"])
        self.assertTrue(config.should_exclude("api/__generated__/types.ts"))
        self.assertTrue(config.should_exclude("components/Button.stories.tsx"))
        self.assertTrue(config.should_exclude("legacy/old.js"))
        self.assertFalse(config.should_exclude("components/Button.tsx"))


class TestLoadConfig(ConfigTestCase):

    def test_discovers_config_walking_up(self):
        self.write(".decimalguard.yml", "source_root: app\nfail_on_high: true\n")
        os.makedirs(os.path.join(self.root, "app", "pages"))
        config = load_config(os.path.join(self.root, "app", "pages"))
        self.assertIsNotNone(config)
        self.assertEqual(config.source_root, "app")
        self.assertTrue(config.fail_on_high)

    def test_yaml_extension_also_discovered(self):
        self.write(".decimalguard.yaml", "min_level: medium\n")
        self.assertEqual(load_config(self.root).min_level, "MEDIUM")

    def test_camel_case_keys(self):
        path = self.write("cfg.yml", (
            "sourceRoot: lib\n"
            "watchedFunctions: [divide, multiply]\n"
            "safeConversionFunctions: [toNumber]\n"
            "fileGlobs: ['*.mjs']\n"
            "excludeGlobs: [fixtures]\n"
            "failOnHigh: true\n"
        ))
        config = load_config(self.root, path)
        self.assertEqual(config.source_root, "lib")
        self.assertEqual(config.watched_functions, frozenset({"divide", "multiply"}))
        self.assertEqual(config.safe_conversion_functions, frozenset({"toNumber"}))
        self.assertEqual(config.file_globs, ("*.mjs",))
        self.assertEqual(config.exclude_globs, ["fixtures"])
        self.assertTrue(config.fail_on_high)
        self.assertEqual(config.config_path, path)

    def test_empty_file_gives_defaults(self):
        path = self.write("empty.yml", "")
        config = load_config(self.root, path)
        self.assertEqual(config.watched_functions, DEFAULT_WATCHED_FUNCTIONS)

    def test_missing_explicit_config(self):
        with self.assertRaises(ConfigurationError):
            load_config(self.root, os.path.join(self.root, "nope.yml"))

    def test_invalid_yaml(self):
        path = self.write("bad.yml", "watched_functions: [divDecimals\n")
        with self.assertRaises(ConfigurationError):
            load_config(self.root, path)

    def test_wrong_types(self):
        for content in ("watched_functions: divDecimals\n",
                        "fail_on_high: 'yes'\n",
                        "- just\n- a list\n",
                        "min_level: SEVERE\n"):
            with self.subTest(content=content):
                path = self.write("typed.yml", content)
                with self.assertRaises(ConfigurationError):
                    load_config(self.root, path)

    def test_overlap_in_file(self):
        path = self.write("overlap.yml", "safe_conversion_functions: [Number, addDecimals]\n")
        with self.assertRaises(ConfigurationError):
            load_config(self.root, path)


if __name__ == '__main__':
    unittest.main()
