from x402_core.path import path_is_match


class TestExactMatch:
    def test_exact_match(self):
        assert path_is_match("/weather", "/weather") is True
        assert path_is_match("/weather", "/premium") is False

    def test_trailing_slash_is_significant(self):
        assert path_is_match("/weather", "/weather/") is False

    def test_case_sensitive(self):
        assert path_is_match("/Weather", "/weather") is False


class TestGlobPatterns:
    def test_star_crosses_segments(self):
        assert path_is_match("/premium/*", "/premium/report") is True
        assert path_is_match("/premium/*", "/premium/report/2024") is True
        assert path_is_match("/premium/*", "/weather") is False

    def test_middle_wildcard(self):
        assert path_is_match("/api/*/forecast", "/api/paris/forecast") is True
        assert path_is_match("/api/*/forecast", "/api/paris/history") is False

    def test_question_mark(self):
        assert path_is_match("/v?/weather", "/v1/weather") is True
        assert path_is_match("/v?/weather", "/v10/weather") is False

    def test_match_all(self):
        assert path_is_match("*", "/any/path") is True
        assert path_is_match("*", "") is True


class TestRegexPatterns:
    def test_regex_anchored(self):
        assert path_is_match(r"regex:^/weather/\d+$", "/weather/42") is True
        assert path_is_match(r"regex:^/weather/\d+$", "/weather/paris") is False

    def test_regex_matches_from_start(self):
        assert path_is_match("regex:/weather", "/weather/today") is True
        assert path_is_match("regex:today", "/weather/today") is False


class TestListPatterns:
    def test_mixed_list(self):
        patterns = ["/weather", "/premium/*", r"regex:^/v2/.*$"]
        assert path_is_match(patterns, "/weather") is True
        assert path_is_match(patterns, "/premium/x") is True
        assert path_is_match(patterns, "/v2/anything") is True
        assert path_is_match(patterns, "/free") is False

    def test_empty_list(self):
        assert path_is_match([], "/weather") is False


def test_invalid_type_returns_false():
    assert path_is_match(None, "/weather") is False  # type: ignore
    assert path_is_match(123, "/weather") is False  # type: ignore
