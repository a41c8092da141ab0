ENGINE_VERSION = "BatchTrust-1.0.0"

RULE_CATALOGUE_VERSION = "rules-2025.1"

DETECTOR_VERSIONS = {
    "rules": "deterministic-rule-catalogue@2025.1",
}

PAYLOAD_FORMAT_VERSION = "qr-v2"
