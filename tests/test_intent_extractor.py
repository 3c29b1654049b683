"""Unit tests for rule-based intent extraction."""

import unittest

from src.analyzer.intent_extractor import RuleBasedIntentExtractor
from src.errors import AnalysisError
from src.schemas.deployment_schemas import StrategyType


class TestIntentExtractor(unittest.TestCase):

    def setUp(self):
        self.extractor = RuleBasedIntentExtractor()

    def test_plain_request_has_defaults(self):
        intent = self.extractor.extract("Deploy my Flask app on AWS")
        self.assertEqual(intent.cloud_provider, "aws")
        self.assertIsNone(intent.deployment_type)
        self.assertEqual(intent.environment, "production")
        self.assertEqual(intent.estimated_traffic, "low")
        self.assertEqual(intent.scaling_requirements, "low")
        self.assertFalse(intent.database_needed)
        self.assertFalse(intent.https)
        self.assertEqual(intent.requirements, [])
        self.assertEqual(intent.confidence, 0.7)

    def test_deployment_type_needs_whole_word(self):
        self.assertEqual(self.extractor.extract("run it on ec2 please").deployment_type, StrategyType.VM)
        self.assertEqual(self.extractor.extract("use docker").deployment_type, StrategyType.CONTAINER)
        # "vm" inside another word is not a request
        self.assertIsNone(self.extractor.extract("deploy the vmware dashboard").deployment_type)

    def test_serverless_alias(self):
        intent = self.extractor.extract("Put my API on Lambda")
        self.assertEqual(intent.deployment_type, StrategyType.SERVERLESS)

    def test_flags(self):
        intent = self.extractor.extract(
            "Staging deploy with a Postgres database, file uploads, custom domain over HTTPS and alerting"
        )
        self.assertEqual(intent.environment, "staging")
        self.assertTrue(intent.database_needed)
        self.assertTrue(intent.storage_needed)
        self.assertTrue(intent.custom_domain)
        self.assertTrue(intent.https)
        self.assertTrue(intent.monitoring)

    def test_load(self):
        high = self.extractor.extract("Expecting high traffic from day one")
        self.assertEqual((high.estimated_traffic, high.scaling_requirements), ("high", "high"))
        medium = self.extractor.extract("medium load expected")
        self.assertEqual(medium.estimated_traffic, "medium")

    def test_requirements(self):
        tags = RuleBasedIntentExtractor.extract_requirements(
            "A secure, fast and cheap service with good uptime that can scale"
        )
        self.assertEqual(
            tags,
            ["security", "performance", "auto-scaling", "high-availability", "cost-optimization"],
        )

    def test_provider(self):
        self.assertEqual(self.extractor.extract("deploy to azure").cloud_provider, "azure")
        self.assertEqual(self.extractor.extract("deploy to Google Cloud").cloud_provider, "gcp")

    def test_empty_description(self):
        for bad in ("", "   ", None):
            with self.assertRaises(AnalysisError):
                self.extractor.extract(bad)


if __name__ == '__main__':
    unittest.main()
