"""Tests for pure helpers"""

from dataclasses import dataclass

from siteplan import _helpers


class TestPrefixName:
    def test_joins_app_stage_and_name(self):
        assert _helpers.prefix_name("shop", "dev", "WebServer") == "shop-dev-WebServer"

    def test_truncates_long_names_with_hash(self):
        result = _helpers.prefix_name("shop", "dev", "x" * 100, max_len=64)
        assert len(result) == 64
        assert result.startswith("shop-dev-xxx")

    def test_truncation_is_deterministic_and_distinct(self):
        first = _helpers.prefix_name("shop", "dev", "a" * 80)
        again = _helpers.prefix_name("shop", "dev", "a" * 80)
        other = _helpers.prefix_name("shop", "prod", "a" * 80)
        assert first == again
        assert first != other


class TestLogGroupArn:
    def test_follows_locator_grammar(self):
        assert (
            _helpers.log_group_arn("eu-west-1", "/aws/lambda/fn")
            == "arn:aws:logs:eu-west-1:*:log-group:/aws/lambda/fn"
        )


class TestStaticPattern:
    def test_file_matches_itself(self, tmp_path):
        (tmp_path / "favicon.ico").write_text("")
        assert _helpers.static_pattern(tmp_path / "favicon.ico") == "favicon.ico"

    def test_directory_matches_children(self, tmp_path):
        (tmp_path / "build").mkdir()
        assert _helpers.static_pattern(tmp_path / "build") == "build/*"


@dataclass(frozen=True)
class _Args:
    edge: bool = False
    name: str = "site"


class TestTransform:
    def test_none_is_identity(self):
        args = _Args()
        assert _helpers.transform(None, args) is args

    def test_mapping_overrides_dataclass_fields(self):
        assert _helpers.transform({"edge": True}, _Args()) == _Args(edge=True)

    def test_mapping_merges_onto_dict(self):
        assert _helpers.transform({"b": 3}, {"a": 1, "b": 2}) == {"a": 1, "b": 3}

    def test_function_result_replaces_value(self):
        assert _helpers.transform(lambda a: _Args(name="x"), _Args()) == _Args(name="x")

    def test_function_returning_none_keeps_value(self):
        value = {"a": 1}

        def mutate(args):
            args["a"] = 2

        assert _helpers.transform(mutate, value) == {"a": 2}


class TestUrlHost:
    def test_strips_scheme_and_path(self):
        assert _helpers.url_host("https://abc.lambda-url.us-east-1.on.aws/") == (
            "abc.lambda-url.us-east-1.on.aws"
        )


class TestCloudfrontFunctionCode:
    def test_wraps_injections_in_order(self):
        code = _helpers.cloudfront_function_code(["a();", "b();"])
        assert code.startswith("function handler(event) {")
        assert code.index("a();") < code.index("b();")
        assert code.endswith("  return request;\n}")


class TestAssetCacheControl:
    def test_versioned_assets_are_immutable(self):
        assert (
            _helpers.asset_cache_control("build/entry-ABC.js", "build")
            == _helpers.IMMUTABLE_CACHE_CONTROL
        )

    def test_other_assets_revalidate(self):
        assert (
            _helpers.asset_cache_control("favicon.ico", "build")
            == _helpers.REVALIDATE_CACHE_CONTROL
        )
        assert (
            _helpers.asset_cache_control("builds/x.js", "build")
            == _helpers.REVALIDATE_CACHE_CONTROL
        )
