from __future__ import annotations

from collections.abc import Mapping
from datetime import timedelta
from typing import Any

import pytest
from structlog.testing import capture_logs

from confspec import (
    SIZE,
    ConfigSource,
    ConfigurationError,
    ConstraintViolationError,
    DictSource,
    EnvSource,
    FileSource,
    FlatSource,
    KVSource,
    Layer,
    LazyEvaluationError,
    MissingRequiredValueError,
    ResolutionError,
    SourceNotFoundError,
    SourceUnavailableError,
    Spec,
    TypeCoercionError,
    UnknownSourcePathError,
    resolve,
)
from confspec.resolver import order_layers


class FailingSource(ConfigSource):
    def load(self) -> Mapping[str, Any] | None:
        raise OSError("connection refused")


def server_spec() -> Spec:
    spec = Spec("server")
    spec.declare_optional("host", "0.0.0.0")
    spec.declare_required("tcpPort", int)
    return spec


def test_missing_required_value_is_reported_alone():
    with pytest.raises(ResolutionError) as excinfo:
        resolve(server_spec(), [{}])

    errors = excinfo.value.errors
    assert len(errors) == 1
    assert isinstance(errors[0], MissingRequiredValueError)
    assert errors[0].path == "tcpPort"
    assert excinfo.value.paths == ["tcpPort"]


def test_default_fills_and_raw_string_is_coerced():
    spec = server_spec()
    host, tcp_port = spec.items

    cfg = resolve(spec, [{"tcpPort": "8080"}])

    assert cfg[host] == "0.0.0.0"
    assert cfg[tcp_port] == 8080
    assert cfg.origin(host) == "default"
    assert cfg.origin(tcp_port) == "DictSource"


def test_higher_rank_wins():
    spec = server_spec()

    cfg = resolve(
        spec,
        [
            Layer(DictSource({"tcpPort": 80}), rank=0),
            Layer(DictSource({"tcpPort": 8080}), rank=1),
        ],
    )
    assert cfg["tcpPort"] == 8080

    cfg = resolve(
        spec,
        [
            Layer(DictSource({"tcpPort": 8080}), rank=1),
            Layer(DictSource({"tcpPort": 80}), rank=0),
        ],
    )
    assert cfg["tcpPort"] == 8080


def test_equal_rank_later_layer_wins():
    cfg = resolve(server_spec(), [{"tcpPort": 80}, {"tcpPort": 8080}])

    assert cfg["tcpPort"] == 8080


def test_source_precedence_hint_is_used_without_explicit_rank():
    high = DictSource({"tcpPort": 1}, precedence=10)
    low = DictSource({"tcpPort": 2})

    layers = order_layers([Layer(high), Layer(low), Layer(low, rank=20)])

    assert [layer.effective_rank for layer in layers] == [20, 10, 0]
    assert resolve(server_spec(), [high, low])["tcpPort"] == 1


def test_first_defining_source_wins_per_item():
    spec = server_spec()

    cfg = resolve(spec, [{"host": "10.0.0.1", "tcpPort": 80}, {"tcpPort": 8080}])

    assert cfg["host"] == "10.0.0.1"
    assert cfg["tcpPort"] == 8080


def test_null_counts_only_for_nullable_items():
    spec = Spec()
    spec.declare_optional("name", "fallback")
    spec.declare_optional("nickname", "nick", nullable=True)

    cfg = resolve(spec, [{"name": "lower", "nickname": "lower"}, {"name": None, "nickname": None}])

    assert cfg["name"] == "lower"
    assert cfg["nickname"] is None


def test_all_failures_are_aggregated():
    spec = server_spec()
    spec.declare_required("workers", int)
    spec.declare_optional("debug", False)
    spec.declare_required("name", str)

    with pytest.raises(ResolutionError) as excinfo:
        resolve(spec, [{"tcpPort": "notanumber", "debug": "maybe", "name": "svc"}])

    errors = excinfo.value.errors
    by_path = {error.path: error for error in errors}
    assert set(by_path) == {"tcpPort", "workers", "debug"}

    coercion = by_path["tcpPort"]
    assert isinstance(coercion, TypeCoercionError)
    assert coercion.raw == "notanumber"
    assert coercion.target == "int"
    assert isinstance(by_path["workers"], MissingRequiredValueError)
    assert isinstance(by_path["debug"], TypeCoercionError)

    message = str(excinfo.value)
    assert "3 error(s)" in message
    assert "'notanumber'" in message
    assert "workers" in message


def test_defaults_only_equals_explicit_defaults():
    spec = Spec()
    spec.declare_optional("host", "0.0.0.0")
    spec.declare_optional("port", 8080)
    spec.declare_optional("tags", ["a", "b"])

    from_defaults = resolve(spec, [DictSource({})])
    explicit = resolve(spec, [{"host": "0.0.0.0", "port": "8080", "tags": "a,b"}])

    assert from_defaults == explicit
    assert from_defaults.to_dict() == explicit.to_dict()


def test_nested_spec_with_nested_and_flat_sources():
    root = Spec()
    server = root.nest("server", server_spec())
    tcp_port = server.items[1]

    cfg = resolve(
        root,
        [
            DictSource({"server": {"host": "example.org", "tcpPort": 1}}),
            KVSource({"server.tcpPort": 2}),
        ],
    )

    assert cfg["server.host"] == "example.org"
    assert cfg[tcp_port] == 2
    assert cfg.server.tcpPort == 2


def test_flat_source_null_literal_and_lists():
    spec = Spec()
    spec.declare_optional("ports", [80], list[int])
    spec.declare_optional("proxy", None, str, nullable=True)

    cfg = resolve(spec, [{"proxy": "http://proxy"}, FlatSource({"ports": "1,2,3", "proxy": "null"})])

    assert cfg["ports"] == [1, 2, 3]
    assert cfg["proxy"] is None


def test_map_items_collect_their_subtree():
    spec = Spec()
    spec.declare_optional("labels", {"tier": "web"}, dict[str, str])

    cfg = resolve(spec, [FlatSource({"labels.team": "core", "labels.env": "prod"})])

    assert cfg["labels"] == {"team": "core", "env": "prod"}


def test_env_source_binds_flattened_names():
    spec = Spec()
    source = Spec()
    source.declare_required("test.type", str)
    spec.nest("source", source)

    cfg = resolve(spec, [EnvSource(environ={"SOURCE_TEST_TYPE": "env", "PATH": "/bin"})])

    assert cfg["source.test.type"] == "env"


def test_env_source_without_nesting_binds_verbatim_names():
    spec = Spec()
    spec.declare_required("SOURCE_TEST_TYPE", str)

    cfg = resolve(spec, [EnvSource(nested=False, environ={"SOURCE_TEST_TYPE": "env"})])

    assert cfg["SOURCE_TEST_TYPE"] == "env"


def test_case_insensitive_matching_binds_camel_case_items():
    root = Spec()
    root.nest("server", server_spec())

    env = EnvSource("MYAPP_", environ={"MYAPP_SERVER_TCPPORT": "9090"})

    with pytest.raises(ResolutionError):
        resolve(root, [env])

    cfg = resolve(root, [env], case_insensitive=True)
    assert cfg["server.tcpPort"] == 9090


def test_optional_unavailable_source_is_skipped_with_warning():
    with capture_logs() as logs:
        cfg = resolve(server_spec(), [{"tcpPort": 1}, FailingSource()])

    assert cfg["tcpPort"] == 1
    warnings = [entry for entry in logs if entry["log_level"] == "warning"]
    assert warnings[0]["event"] == "source_unavailable"
    assert warnings[0]["source"] == "FailingSource"
    assert "connection refused" in warnings[0]["error"]


def test_mandatory_unavailable_source_fails_the_pass(tmp_path):
    missing = FileSource(tmp_path / "missing.yaml")

    with pytest.raises(ResolutionError) as excinfo:
        resolve(server_spec(), [Layer(missing, mandatory=True), Layer(FailingSource(), mandatory=True)])

    errors = excinfo.value.errors
    assert [type(e) for e in errors[:2]] == [SourceUnavailableError, SourceUnavailableError]
    assert {type(e.__cause__) for e in errors[:2]} == {OSError, SourceNotFoundError}
    # Required items are still checked in the same pass.
    assert isinstance(errors[2], MissingRequiredValueError)


def test_optional_missing_file_contributes_nothing(tmp_path):
    optional = FileSource(tmp_path / "missing.yaml", optional=True)

    with capture_logs() as logs:
        cfg = resolve(server_spec(), [{"tcpPort": 5}, optional])

    assert cfg["tcpPort"] == 5
    assert not [entry for entry in logs if entry["log_level"] == "warning"]


def test_non_mapping_source_is_unavailable():
    class BadSource(ConfigSource):
        def load(self):  # type: ignore[override]
            return 42  # not a mapping

    with pytest.raises(ResolutionError) as excinfo:
        resolve(server_spec(), [{"tcpPort": 1}, Layer(BadSource(), mandatory=True)])

    assert isinstance(excinfo.value.errors[0], SourceUnavailableError)


def test_item_constraints_are_checked():
    spec = Spec()
    spec.declare_required("port", int, constraints={"minimum": 1, "maximum": 65535})
    spec.declare_required("mode", str, constraints={"enum": ["fast", "safe"]})

    with pytest.raises(ResolutionError) as excinfo:
        resolve(spec, [{"port": 0, "mode": "reckless"}])

    errors = excinfo.value.errors
    assert [type(e) for e in errors] == [ConstraintViolationError, ConstraintViolationError]
    assert [e.path for e in errors] == ["port", "mode"]


def test_whole_config_schema_validation():
    spec = Spec()
    spec.declare_optional("min", 1)
    spec.declare_optional("max", 10)
    schema = {
        "type": "object",
        "properties": {"max": {"type": "integer", "minimum": 5}},
    }

    assert resolve(spec, [], schema=schema)["max"] == 10

    with pytest.raises(ResolutionError) as excinfo:
        resolve(spec, [{"max": 2}], schema=schema)

    (error,) = excinfo.value.errors
    assert isinstance(error, ConstraintViolationError)
    assert error.path == "max"


def test_fail_on_unknown_path():
    spec = server_spec()

    assert resolve(spec, [{"tcpPort": 1, "extra": True}])["tcpPort"] == 1

    with pytest.raises(ResolutionError) as excinfo:
        resolve(spec, [{"tcpPort": 1, "extra": True}], fail_on_unknown_path=True)

    (error,) = excinfo.value.errors
    assert isinstance(error, UnknownSourcePathError)
    assert error.path == "extra"


def test_lazy_items_derive_from_resolved_values():
    spec = server_spec()
    spec.declare_lazy("url", lambda values: f"http://{values['host']}:{values['tcpPort']}", str)

    cfg = resolve(spec, [{"tcpPort": 80}])
    assert cfg["url"] == "http://0.0.0.0:80"
    assert cfg.origin("url") == "lazy"

    cfg = resolve(spec, [{"tcpPort": 80, "url": "http://override"}])
    assert cfg["url"] == "http://override"


def test_lazy_failures_are_aggregated():
    spec = Spec()
    spec.declare_lazy("ratio", lambda values: 1 / 0, float)
    spec.declare_required("name", str)

    with pytest.raises(ResolutionError) as excinfo:
        resolve(spec, [])

    errors = excinfo.value.errors
    assert [type(e) for e in errors] == [MissingRequiredValueError, LazyEvaluationError]


def test_prefixed_and_scoped_sources():
    root = Spec()
    root.nest("server", server_spec())

    prefixed = DictSource({"tcpPort": 7}).with_prefix("server")
    assert resolve(root, [prefixed])["server.tcpPort"] == 7

    scoped = DictSource({"services": {"api": {"tcpPort": 9}}}).at("services.api")
    assert resolve(server_spec(), [scoped])["tcpPort"] == 9


def test_mutating_a_resolved_default_leaves_the_spec_untouched():
    spec = Spec()
    tags = spec.declare_optional("tags", ["a", "b"])

    resolve(spec, [])["tags"].append("leak")

    assert resolve(spec, [])["tags"] == ["a", "b"]
    assert tags.default == ["a", "b"]
    assert spec.describe()[0].default == ["a", "b"]


def test_out_of_range_duration_is_aggregated_with_other_errors():
    spec = Spec()
    spec.declare_optional("timeout", timedelta(seconds=1))
    spec.declare_required("port", int)

    with pytest.raises(ResolutionError) as excinfo:
        resolve(spec, [{"timeout": "999999999999d"}])

    by_path = {error.path: error for error in excinfo.value.errors}
    assert set(by_path) == {"timeout", "port"}
    assert isinstance(by_path["timeout"], TypeCoercionError)
    assert isinstance(by_path["port"], MissingRequiredValueError)


def test_size_items_resolve_from_strings():
    spec = Spec()
    spec.declare_optional("buffer", 4096, SIZE)

    assert resolve(spec, [])["buffer"] == 4096
    assert resolve(spec, [FlatSource({"buffer": "1.5kB"})])["buffer"] == 1500


def test_invalid_schema_is_a_configuration_error():
    spec = Spec()
    spec.declare_optional("max", 10)

    with pytest.raises(ConfigurationError, match="Invalid JSON Schema"):
        resolve(spec, [], schema={"properties": {"max": {"minimum": "five"}}})
