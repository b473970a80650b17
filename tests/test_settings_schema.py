"""
Unit tests for the settings field catalogue, normalization and validation.
"""

import pytest

from gateway_console.settings_schema import (
    SECRET_MASK,
    SettingsValidationError,
    check_constraints,
    effective_values,
    fields_for_tab,
    mask_values,
    normalize_defaults_overrides,
    normalize_updates,
    parse_quantity,
    schema_payload,
    tab_defaults,
    tab_names,
    validation_report,
)


class TestCatalogue:
    """Test the tab catalogue."""

    def test_tab_order(self):
        """Tabs appear in console order."""
        assert tab_names() == ["authentication", "routing", "models", "monitoring", "scaling"]

    def test_unknown_tab(self):
        """Unknown tabs raise KeyError."""
        with pytest.raises(KeyError):
            fields_for_tab("billing")

    def test_field_names_unique_per_tab(self):
        """No tab defines a field twice."""
        for tab in tab_names():
            names = [field["name"] for field in fields_for_tab(tab)]
            assert len(names) == len(set(names)), tab

    def test_defaults(self):
        """Representative defaults match the console."""
        routing = tab_defaults("routing")
        assert routing["load_balance_method"] == "round-robin"
        assert routing["max_retries"] == 3
        assert routing["health_check_path"] == "/health"
        scaling = tab_defaults("scaling")
        assert scaling["min_replicas"] == 2
        assert scaling["max_replicas"] == 20
        assert scaling["cpu_request"] == "500m"
        assert tab_defaults("monitoring")["notification_channels"] == ["slack-alerts", "email-ops-team"]

    def test_defaults_with_overrides(self):
        """Overrides replace built-in defaults."""
        assert tab_defaults("routing", {"max_retries": 1})["max_retries"] == 1

    def test_effective_values_layering(self):
        """Stored overrides win over deployment defaults, which win over built-ins."""
        values = effective_values("routing", {"max_retries": 7}, {"max_retries": 1, "retry_delay_ms": 500})
        assert values["max_retries"] == 7
        assert values["retry_delay_ms"] == 500
        assert values["retry_backoff"] == "exponential"

    def test_schema_payload(self):
        """Schema carries title, description and fields."""
        payload = schema_payload("authentication")
        assert payload["title"] == "Authentication & Authorization"
        assert {field["name"] for field in payload["fields"]} >= {"auth_enabled", "jwt_secret"}


class TestNormalizeUpdates:
    """Test normalization of raw form values."""

    def test_unknown_field(self):
        """Unknown fields are rejected."""
        with pytest.raises(SettingsValidationError) as exc:
            normalize_updates("routing", {"bogus": 1})
        assert exc.value.issues == [{"field": "bogus", "message": "unknown field"}]

    def test_integer_bounds(self):
        """Out-of-range integers are rejected, not clamped."""
        with pytest.raises(SettingsValidationError) as exc:
            normalize_updates("routing", {"max_retries": 11, "failure_threshold": 0})
        fields = {issue["field"]: issue["message"] for issue in exc.value.issues}
        assert fields == {"max_retries": "must be <= 10", "failure_threshold": "must be >= 1"}

    def test_integer_coercion(self):
        """Integral floats are accepted as integers."""
        assert normalize_updates("routing", {"max_retries": 4.0, "retry_delay_ms": 300}) == {
            "max_retries": 4,
            "retry_delay_ms": 300,
        }

    @pytest.mark.parametrize("value", [True, 2.5, "many", "5", [3]])
    def test_integer_rejects(self, value):
        """Booleans, fractions, strings and lists are not integers."""
        with pytest.raises(SettingsValidationError):
            normalize_updates("routing", {"max_retries": value})

    def test_boolean_is_strict(self):
        """Booleans must be real booleans."""
        with pytest.raises(SettingsValidationError):
            normalize_updates("routing", {"retry_enabled": "yes"})

    def test_enum_case_insensitive(self):
        """Enum values are matched case-insensitively and stored canonically."""
        assert normalize_updates("routing", {"load_balance_method": "Least-Connections"}) == {
            "load_balance_method": "least-connections"
        }

    def test_enum_rejects_unknown(self):
        """Unknown enum values list the valid choices."""
        with pytest.raises(SettingsValidationError) as exc:
            normalize_updates("routing", {"retry_backoff": "random"})
        assert "exponential" in exc.value.issues[0]["message"]

    def test_multi_dedupes(self):
        """Multi-select values are canonicalized and de-duplicated."""
        assert normalize_updates("monitoring", {"audit_events": ["Config", "auth", "config"]}) == {
            "audit_events": ["config", "auth"]
        }

    def test_url_and_path(self):
        """URLs need an http(s) scheme and paths start with a slash."""
        with pytest.raises(SettingsValidationError) as exc:
            normalize_updates("monitoring", {"metrics_endpoint": "prometheus:9090"})
        assert exc.value.issues[0]["field"] == "metrics_endpoint"
        with pytest.raises(SettingsValidationError):
            normalize_updates("routing", {"health_check_path": "healthz"})
        assert normalize_updates("routing", {"health_check_path": " /ready "}) == {"health_check_path": "/ready"}

    def test_duration(self):
        """Token expiry accepts s/m/h/d durations."""
        assert normalize_updates("authentication", {"token_expiry": "7d"}) == {"token_expiry": "7d"}
        with pytest.raises(SettingsValidationError):
            normalize_updates("authentication", {"token_expiry": "1 week"})

    def test_quantity(self):
        """Resource quantities use Kubernetes notation."""
        assert normalize_updates("scaling", {"memory_limit": "8Gi"}) == {"memory_limit": "8Gi"}
        with pytest.raises(SettingsValidationError):
            normalize_updates("scaling", {"cpu_limit": "two"})

    def test_invalid_yaml_reports_position(self):
        """Broken YAML is rejected with a line number."""
        with pytest.raises(SettingsValidationError) as exc:
            normalize_updates("routing", {"custom_routes": "routes:\n  - path: [unclosed\n"})
        assert exc.value.issues[0]["message"].startswith("is not valid YAML")

    def test_invalid_json(self):
        """Broken JSON is rejected."""
        with pytest.raises(SettingsValidationError) as exc:
            normalize_updates("monitoring", {"dashboard_config": "{\"dashboard\": "})
        assert exc.value.issues[0]["message"].startswith("is not valid JSON")

    def test_none_means_revert(self):
        """None is kept so callers can drop the override."""
        assert normalize_updates("routing", {"max_retries": None}) == {"max_retries": None}

    def test_masked_secret_is_skipped(self):
        """The mask placeholder never overwrites a stored secret."""
        assert normalize_updates("authentication", {"jwt_secret": SECRET_MASK}) == {}


class TestValidation:
    """Test cross-field rules and the Test Configuration report."""

    def test_min_max_instances(self):
        """Minimum instances may not exceed maximum instances."""
        with pytest.raises(SettingsValidationError) as exc:
            check_constraints("models", tab_defaults("models", {"min_instances": 12, "max_instances": 4}))
        assert exc.value.issues[0]["field"] == "min_instances"

    def test_request_above_limit(self):
        """CPU request may not exceed the CPU limit."""
        with pytest.raises(SettingsValidationError) as exc:
            check_constraints("scaling", tab_defaults("scaling", {"cpu_request": "3", "cpu_limit": "2000m"}))
        assert exc.value.issues[0]["field"] == "cpu_request"

    def test_parse_quantity(self):
        """Binary and decimal suffixes scale correctly."""
        assert parse_quantity("500m") == pytest.approx(0.5)
        assert parse_quantity("1Gi") == 2.0**30
        assert parse_quantity("2k") == 2000.0

    def test_required_when_auth_enabled(self):
        """An authentication method is required while authentication is on."""
        report = validation_report("authentication", tab_defaults("authentication"))
        assert report["valid"] is False
        assert {"field": "auth_method", "message": "Authentication Method is required"} in report["errors"]

    def test_jwt_secret_required_for_jwt(self):
        """JWT needs a signing secret."""
        values = tab_defaults("authentication", {"auth_method": "jwt"})
        report = validation_report("authentication", values)
        assert [issue["field"] for issue in report["errors"]] == ["jwt_secret"]

        values["jwt_secret"] = "s3cret"
        assert validation_report("authentication", values)["valid"] is True

    def test_rbac_document_warnings(self):
        """Bindings to undefined roles are reported as warnings."""
        rules = "roles:\n  - name: admin\n    permissions: ['*']\nbindings:\n  - role: operator\n"
        values = tab_defaults("authentication", {"auth_method": "apikey", "rbac_rules": rules})
        report = validation_report("authentication", values)
        assert report["valid"] is True
        assert report["warnings"] == [
            {"field": "rbac_rules", "message": "bindings[0] references undefined role 'operator'"}
        ]

    def test_custom_routes_warnings(self):
        """Routes need a path and destination and known middleware."""
        routes = (
            "routes:\n"
            "  - path: /v1/*\n"
            "    middleware: [auth]\n"
            "    load_balance: sticky\n"
        )
        report = validation_report("routing", tab_defaults("routing", {"custom_routes": routes}))
        messages = [warning["message"] for warning in report["warnings"]]
        assert "routes[0] is missing 'destination'" in messages
        assert "routes[0] uses unknown load_balance 'sticky'" in messages
        assert "routes[0] references undefined middleware 'auth'" in messages

    def test_rbac_scalar_lists_are_warnings(self):
        """Scalar roles or bindings are reported instead of breaking the report."""
        values = tab_defaults("authentication", {"auth_method": "apikey", "rbac_rules": "roles: 5\nbindings: admin\n"})
        report = validation_report("authentication", values)
        assert report["valid"] is True
        assert report["warnings"] == [
            {"field": "rbac_rules", "message": "'roles' must be a list"},
            {"field": "rbac_rules", "message": "'bindings' must be a list"},
        ]

    def test_custom_routes_scalar_lists_are_warnings(self):
        """Scalar routes, middleware and per-route middleware are reported."""
        routes = (
            "middleware: 3\n"
            "routes:\n"
            "  - path: /v1/*\n"
            "    destination: http://llama:8080\n"
            "    middleware: 3\n"
        )
        report = validation_report("routing", tab_defaults("routing", {"custom_routes": routes}))
        assert report["warnings"] == [
            {"field": "custom_routes", "message": "'middleware' must be a list"},
            {"field": "custom_routes", "message": "routes[0] 'middleware' must be a list"},
        ]

        report = validation_report("routing", tab_defaults("routing", {"custom_routes": "routes: 5\n"}))
        assert report["warnings"] == [{"field": "custom_routes", "message": "'routes' must be a list"}]

    def test_dashboard_needs_panels(self):
        """Dashboard JSON without dashboard.panels is flagged."""
        values = tab_defaults("monitoring", {"dashboard_config": '{"dashboard": {"title": "API Gateway"}}'})
        report = validation_report("monitoring", values)
        assert report["valid"] is True
        assert report["warnings"] == [
            {"field": "dashboard_config", "message": "Dashboard JSON should contain 'dashboard.panels'"}
        ]

        values["dashboard_config"] = '{"dashboard": {"panels": []}}'
        assert validation_report("monitoring", values)["warnings"] == []

    def test_model_metadata_must_be_mapping(self):
        """Model metadata must be a YAML mapping."""
        values = tab_defaults("models", {"model_metadata": "- llama\n- mistral\n"})
        report = validation_report("models", values)
        assert {"field": "model_metadata", "message": "Model metadata must be a YAML mapping"} in report["warnings"]

    def test_performance_tuning_must_be_mapping(self):
        """Performance tuning must be a YAML mapping."""
        values = tab_defaults("scaling", {"performance_tuning": "just text"})
        report = validation_report("scaling", values)
        assert {
            "field": "performance_tuning",
            "message": "Performance configuration must be a YAML mapping",
        } in report["warnings"]

    def test_semantic_warning(self):
        """Canary deployments without versioning are flagged."""
        values = tab_defaults("models", {"canary_deployment_enabled": True, "versioning_enabled": False})
        report = validation_report("models", values)
        assert report["warnings"][0]["field"] == "canary_deployment_enabled"

    def test_default_tabs_without_required_fields_are_valid(self):
        """Routing, models, monitoring and scaling defaults pass validation."""
        for tab in ("routing", "models", "monitoring", "scaling"):
            assert validation_report(tab, tab_defaults(tab))["valid"] is True, tab


class TestMasking:
    """Test secret masking and defaults documents."""

    def test_mask_values(self):
        """Only non-empty secrets are masked."""
        masked = mask_values("authentication", {"jwt_secret": "abc", "oauth_client_secret": "", "auth_enabled": True})
        assert masked == {"jwt_secret": SECRET_MASK, "oauth_client_secret": "", "auth_enabled": True}

    def test_normalize_defaults_overrides(self):
        """Defaults documents are normalized per tab."""
        normalized = normalize_defaults_overrides({"routing": {"load_balance_method": "Weighted", "max_retries": None}})
        assert normalized == {"routing": {"load_balance_method": "weighted"}}

    def test_normalize_defaults_overrides_errors(self):
        """Unknown tabs and bad values are reported with qualified names."""
        with pytest.raises(SettingsValidationError) as exc:
            normalize_defaults_overrides({"billing": {}, "scaling": {"min_replicas": 0}})
        assert {issue["field"] for issue in exc.value.issues} == {"billing", "scaling.min_replicas"}
