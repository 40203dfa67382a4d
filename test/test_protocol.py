"""
Protocol module behavioral tests (capability versions).

Scope
- Validate ordering, negotiation and the output-schema gate.
- Validate the process-wide version accessors.

Conventions
- Test method names follow CamelCase per project convention.
- Every test restores the default version in tearDown.
"""

import unittest
from unittest import TestCase

from rudder import protocol


class TestVersions(TestCase):
    """Version arithmetic and negotiation."""

    def tearDown(self):
        protocol.reset_version()

    def testCompare(self):
        self.assertLess(protocol.compare("2024-11-05", "2025-06-18"), 0)
        self.assertEqual(protocol.compare("2025-03-26", "2025-03-26"), 0)
        self.assertGreater(protocol.compare("2025-06-18", "2025-03-26"), 0)

    def testCompareRejectsMalformed(self):
        with self.assertRaises(ValueError):
            protocol.compare("latest", "2025-06-18")

    def testNegotiate(self):
        for version in protocol.SUPPORTED_VERSIONS:
            self.assertEqual(protocol.negotiate(version), version)
        for version in ("draft", "1999-01-01", "v2", None):
            self.assertEqual(protocol.negotiate(version), protocol.CURRENT_VERSION)

    def testOutputSchemaGate(self):
        self.assertFalse(protocol.supports_output_schemas("2024-11-05"))
        self.assertFalse(protocol.supports_output_schemas("2025-03-26"))
        self.assertTrue(protocol.supports_output_schemas("2025-06-18"))
        self.assertTrue(protocol.supports_output_schemas("2026-01-01"))
        self.assertFalse(protocol.supports_output_schemas("draft"))

    def testDefaultVersion(self):
        self.assertEqual(protocol.get_version(), protocol.CURRENT_VERSION)

    def testSetVersionNegotiates(self):
        self.assertEqual(protocol.set_version("2025-03-26"), "2025-03-26")
        self.assertEqual(protocol.get_version(), "2025-03-26")
        self.assertEqual(protocol.set_version("draft"), protocol.CURRENT_VERSION)
        self.assertEqual(protocol.get_version(), protocol.CURRENT_VERSION)

    def testSetVersionRequiresString(self):
        with self.assertRaises(TypeError):
            protocol.set_version(20250618)

    def testResetVersion(self):
        protocol.set_version("2024-11-05")
        protocol.reset_version()
        self.assertEqual(protocol.get_version(), protocol.CURRENT_VERSION)


if __name__ == "__main__":
    unittest.main()
