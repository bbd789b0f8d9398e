"""Unit tests for validation.py - Ingress spec shape checks."""

from validation import validate_ingress_spec, validate_spec_against_schema


class TestValidateSpecAgainstSchema:
    """Tests for validate_spec_against_schema function."""

    def test_valid_spec_matches_schema(self):
        schema = {"type": "object", "properties": {"name": {"type": "string"}}}

        assert validate_spec_against_schema({"name": "foo"}, schema) == (True, None)

    def test_error_includes_path(self):
        schema = {
            "type": "object",
            "properties": {
                "items": {"type": "array", "items": {"type": "integer"}}
            },
        }

        is_valid, error = validate_spec_against_schema({"items": [1, "two"]}, schema)

        assert is_valid is False
        assert error.startswith("items.1: ")

    def test_root_errors(self):
        is_valid, error = validate_spec_against_schema([], {"type": "object"})

        assert is_valid is False
        assert error.startswith("(root): ")

    def test_multiple_errors_joined(self):
        schema = {
            "type": "object",
            "properties": {"a": {"type": "string"}, "b": {"type": "integer"}},
        }

        is_valid, error = validate_spec_against_schema({"a": 1, "b": "x"}, schema)

        assert is_valid is False
        assert error.count("; ") == 1


class TestValidateIngressSpec:
    """Tests for the Ingress spec schema."""

    def test_sample_spec_is_valid(self, sample_spec):
        assert validate_ingress_spec(sample_spec) == (True, None)

    def test_empty_spec_is_valid(self):
        assert validate_ingress_spec({}) == (True, None)

    def test_tls_spec_is_valid(self):
        spec = {
            "tls": [{"hosts": ["foo.example.com"], "secret_name": "foo-cert"}],
            "rules": [{"hosts": ["foo.example.com"], "visibility": "ClusterLocal"}],
        }
        assert validate_ingress_spec(spec) == (True, None)

    def test_unknown_visibility(self):
        is_valid, error = validate_ingress_spec({"visibility": "Public"})

        assert is_valid is False
        assert error.startswith("visibility: ")

    def test_rule_requires_hosts(self):
        is_valid, error = validate_ingress_spec({"rules": [{"http": {}}]})

        assert is_valid is False
        assert "'hosts' is a required property" in error

    def test_empty_hosts_rejected(self):
        is_valid, error = validate_ingress_spec({"rules": [{"hosts": []}]})

        assert is_valid is False
        assert error.startswith("rules.0.hosts: ")

    def test_rules_must_be_list(self):
        is_valid, _ = validate_ingress_spec({"rules": "foo.example.com"})
        assert is_valid is False

    def test_negative_timeout_rejected(self):
        spec = {
            "rules": [
                {
                    "hosts": ["foo.example.com"],
                    "http": {"paths": [{"timeout_seconds": -1}]},
                }
            ]
        }

        is_valid, error = validate_ingress_spec(spec)

        assert is_valid is False
        assert error.startswith("rules.0.http.paths.0.timeout_seconds: ")

    def test_split_percent_bounds(self):
        spec = {
            "rules": [
                {
                    "hosts": ["foo.example.com"],
                    "http": {
                        "paths": [{"splits": [{"service_name": "a", "percent": 150}]}]
                    },
                }
            ]
        }

        assert validate_ingress_spec(spec)[0] is False

    def test_unknown_fields_allowed(self):
        assert validate_ingress_spec({"custom": {"anything": 1}}) == (True, None)
