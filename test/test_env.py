"""
Env module behavioral tests (configuration files as a value layer).

Scope
- Validate loading of .env, YAML, JSON and TOML files into flat maps.
- Validate loader faults for missing and malformed files.
- Validate key matching, per-kind conversion and the skip-with-warning policy.

Conventions
- Test method names follow CamelCase per project convention.
- Temporary files live in a TemporaryDirectory per test.
"""

import pathlib
import tempfile
import unittest
import warnings
from unittest import IsolatedAsyncioTestCase, TestCase

from rudder import env
from rudder.faults import EnvFileFormatError, EnvFileNotFoundError, EnvValueWarning
from rudder.flags import Flag, declare


class FileTestCase(TestCase):

    def setUp(self):
        self._directory = tempfile.TemporaryDirectory()
        self.directory = pathlib.Path(self._directory.name)

    def tearDown(self):
        self._directory.cleanup()

    def write(self, name, text):
        path = self.directory / name
        path.write_text(text, encoding="utf-8")
        return path


class TestLoad(FileTestCase):
    """Format detection and flattening."""

    def testYaml(self):
        path = self.write("config.yaml", "count: 7\nname: demo\ntags:\n  - a\n  - b\n")
        self.assertEqual(env.load(path), {"count": 7, "name": "demo", "tags": ["a", "b"]})

    def testYmlSuffix(self):
        path = self.write("config.yml", "count: 7\n")
        self.assertEqual(env.load(path), {"count": 7})

    def testJson(self):
        path = self.write("config.json", '{"count": 3, "db": {"port": 5432}}')
        self.assertEqual(env.load(path), {"count": 3, "db_port": 5432})

    def testToml(self):
        path = self.write("config.toml", 'count = 2\n[db]\nhost = "localhost"\n')
        self.assertEqual(env.load(path), {"count": 2, "db_host": "localhost"})

    def testDotenv(self):
        path = self.write(".env", "# comment\nCOUNT=5\nNAME='demo app'\nEMPTY\n")
        self.assertEqual(env.load(path), {"COUNT": "5", "NAME": "demo app"})

    def testEmptyYamlIsEmpty(self):
        path = self.write("empty.yaml", "")
        self.assertEqual(env.load(path), {})

    def testMissingFile(self):
        with self.assertRaises(EnvFileNotFoundError) as context:
            env.load(self.directory / "missing.yaml")
        self.assertEqual(context.exception.kind, "env_file_not_found")

    def testMalformedYaml(self):
        path = self.write("bad.yaml", "count: [1, 2\n")
        with self.assertRaises(EnvFileFormatError):
            env.load(path)

    def testMalformedJson(self):
        path = self.write("bad.json", "{count: 1}")
        with self.assertRaises(EnvFileFormatError):
            env.load(path)

    def testNonMappingRejected(self):
        path = self.write("list.yaml", "- a\n- b\n")
        with self.assertRaises(EnvFileFormatError):
            env.load(path)


class TestMatch(TestCase):
    """Key to flag resolution."""

    def testExactThenNormalized(self):
        flags = declare([Flag("--dry-run"), Flag("--count")])
        self.assertEqual(env.match("count", flags).name, "count")
        self.assertEqual(env.match("COUNT", flags).name, "count")
        self.assertEqual(env.match("DRY-RUN", flags).name, "dry_run")
        self.assertIsNone(env.match("other", flags))


class TestMerge(IsolatedAsyncioTestCase):
    """Conversion of loaded values against one level's flags."""

    async def testConvertsPerKind(self):
        flags = declare([
            Flag("--count", kind="number"),
            Flag("--verbose", kind="boolean", flag_only=True),
            Flag("--tag", multiple=True),
            Flag("--name"),
        ])
        values = await env.merge({
            "count": "7",
            "verbose": "yes",
            "tag": "a, b",
            "name": 12,
            "unrelated": "x",
        }, flags)
        self.assertEqual(values, {"count": 7.0, "verbose": True, "tag": ["a", "b"], "name": "12"})

    async def testJsonArrayForRepeatable(self):
        flags = declare([Flag("--tag", multiple=True)])
        self.assertEqual(await env.merge({"tag": '["x", "y"]'}, flags), {"tag": ["x", "y"]})

    async def testCustomConverterReceivesRawValue(self):
        flags = declare([Flag("--port", kind=lambda value: int(value) + 1)])
        self.assertEqual(await env.merge({"port": "80"}, flags), {"port": 81})

    async def testBadValueWarnsAndIsSkipped(self):
        flags = declare([Flag("--count", kind="number"), Flag("--name")])
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            values = await env.merge({"count": "lots", "name": "demo"}, flags)
        self.assertEqual(values, {"name": "demo"})
        self.assertTrue(any(isinstance(warning.message, EnvValueWarning) for warning in caught))

    async def testEnumViolationIsSkipped(self):
        flags = declare([Flag("--level", choices=("low", "high"))])
        with warnings.catch_warnings(record=True):
            warnings.simplefilter("always")
            self.assertEqual(await env.merge({"level": "medium"}, flags), {})


if __name__ == "__main__":
    unittest.main()
