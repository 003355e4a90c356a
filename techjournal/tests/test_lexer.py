"""Tests for the record lexer and key normalization."""

import threading
from datetime import datetime

import pytest

from techjournal.ingestion.lexer import (
    DURATION_KEY,
    EVENT_KEY,
    LEVEL_KEY,
    TIME_KEY,
    KeyNormalizer,
    MalformedRecordError,
    RecordLexer,
)


class TestKeyNormalizer:
    """Tests for KeyNormalizer."""

    def test_identifier_unchanged(self):
        assert KeyNormalizer.normalize("OSThread") == "OSThread"
        assert KeyNormalizer.normalize("_t1") == "_t1"

    def test_non_identifier_quoted(self):
        assert KeyNormalizer.normalize("p:processName") == '"p:processName"'
        assert KeyNormalizer.normalize("ProcessList[pid, mem(Kb)]") == '"ProcessList[pid, mem(Kb)]"'
        assert KeyNormalizer.normalize("1abc") == '"1abc"'

    def test_cached_result_matches_fresh_result(self):
        normalizer = KeyNormalizer()
        for key in ("Sql", "p:processName", "Locks[0]"):
            first = normalizer(key)
            second = normalizer(key)
            assert first == second == KeyNormalizer.normalize(key)

    def test_results_are_cached(self):
        normalizer = KeyNormalizer()
        normalizer("a:b")
        normalizer("a:b")
        normalizer("c")
        assert len(normalizer) == 2

    def test_max_size_limits_cache(self):
        normalizer = KeyNormalizer(max_size=1)
        assert normalizer("a:b") == '"a:b"'
        assert normalizer("c:d") == '"c:d"'
        assert len(normalizer) == 1

    def test_concurrent_use(self):
        normalizer = KeyNormalizer()
        results = []

        def work():
            results.append(normalizer("p:processName"))

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert set(results) == {'"p:processName"'}
        assert len(normalizer) == 1


class TestRecordLexer:
    """Tests for RecordLexer.lex."""

    def setup_method(self):
        self.lexer = RecordLexer()

    def test_fixed_fields(self):
        fields = self.lexer.lex("15:20.957001-3,DBMSSQL,2,OSThread=9952")

        assert fields[TIME_KEY] == "15:20.957001"
        assert fields[DURATION_KEY] == "3"
        assert fields[EVENT_KEY] == "DBMSSQL"
        assert fields[LEVEL_KEY] == "2"
        assert fields["OSThread"] == "9952"

    def test_event_upper_cased(self):
        fields = self.lexer.lex("15:20.957001-3,Conn,1")
        assert fields[EVENT_KEY] == "CONN"

    def test_level_without_properties(self):
        fields = self.lexer.lex("15:20.957001-3,CALL,4")
        assert fields[LEVEL_KEY] == "4"
        assert len(fields) == 4

    def test_negative_duration(self):
        fields = self.lexer.lex("15:20.957001--5,CALL,0,a=1")
        assert fields[DURATION_KEY] == "-5"
        assert fields["a"] == "1"

    def test_round_trip_of_simple_properties(self):
        properties = {"process": "rphost", "OSThread": "9952", "Usr": "admin"}
        raw = "00:01.000001-10,EXCP,1," + ",".join(f"{k}={v}" for k, v in properties.items())

        fields = self.lexer.lex(raw)

        for key, value in properties.items():
            assert fields[key] == value

    def test_quoted_values(self):
        fields = self.lexer.lex(
            "15:20.957001-3,DBMSSQL,2,Sql='SELECT a, b FROM t',Context=\"Form.Open\",x=1"
        )
        assert fields["Sql"] == "SELECT a, b FROM t"
        assert fields["Context"] == "Form.Open"
        assert fields["x"] == "1"

    def test_doubled_quote_kept_verbatim(self):
        fields = self.lexer.lex("15:20.957001-3,DBMSSQL,2,k='a''b',z=2")
        assert fields["k"] == "a''b"
        assert fields["z"] == "2"

    def test_two_doubled_quotes_kept_verbatim(self):
        fields = self.lexer.lex("15:20.957001-3,DBMSSQL,2,k='a''''b',z=1")
        assert fields["k"] == "a''''b"
        assert fields["z"] == "1"

    def test_inner_quote_not_followed_by_comma(self):
        fields = self.lexer.lex("15:20.957001-3,DBMSSQL,2,k='a'b',z=1")
        assert fields["k"] == "a'b"
        assert fields["z"] == "1"

    def test_inner_quote_in_last_value(self):
        fields = self.lexer.lex("15:20.957001-3,DBMSSQL,2,k='a'b'")
        assert fields["k"] == "a'b"

    def test_doubled_quote_without_closing_quote(self):
        fields = self.lexer.lex("15:20.957001-3,DBMSSQL,2,k='a''")
        assert fields["k"] == "a''"

    def test_quoted_value_at_end(self):
        fields = self.lexer.lex("15:20.957001-3,DBMSSQL,2,Sql='SELECT 1'")
        assert fields["Sql"] == "SELECT 1"

    def test_quoted_value_spanning_lines(self):
        fields = self.lexer.lex("15:20.957001-3,DBMSSQL,2,Sql='SELECT\nFROM t',y=1")
        assert fields["Sql"] == "SELECT\nFROM t"
        assert fields["y"] == "1"

    def test_unterminated_quote_takes_rest(self):
        fields = self.lexer.lex("15:20.957001-3,DBMSSQL,2,Sql='SELECT 1,x=2")
        assert fields["Sql"] == "SELECT 1,x=2"
        assert "x" not in fields

    def test_duplicate_keys_joined(self):
        fields = self.lexer.lex("15:20.957001-3,EXCP,1,a=1,a=2")
        assert fields["a"] == "1,2"

    def test_empty_value_at_end(self):
        fields = self.lexer.lex("15:20.957001-3,EXCP,1,k=")
        assert fields["k"] == ""

    def test_empty_value_in_middle(self):
        fields = self.lexer.lex("15:20.957001-3,EXCP,1,k=,m=5")
        assert fields["k"] == ""
        assert fields["m"] == "5"

    def test_key_without_value_stops_lexing(self):
        fields = self.lexer.lex("15:20.957001-3,EXCP,1,a=1,garbage")
        assert fields["a"] == "1"
        assert "garbage" not in fields

    def test_keys_are_normalized(self):
        fields = self.lexer.lex("15:20.957001-3,SCALL,1,p:processName=rphost")
        assert fields['"p:processName"'] == "rphost"

    def test_shared_normalizer_is_used(self):
        normalizer = KeyNormalizer()
        lexer = RecordLexer(normalizer)
        lexer.lex("15:20.957001-3,SCALL,1,p:processName=rphost,t:clientID=5")
        assert len(normalizer) == 2

    @pytest.mark.parametrize("raw", [
        "",
        "garbage",
        "15:20-3,DBMSSQL,2",
        "15:20.957001,DBMSSQL,2",
        "15:20.957001-x,DBMSSQL,2",
        "15:20.957001-3,,2",
        "15:20.957001-3,DBMSSQL,level",
    ])
    def test_malformed_prefix_rejected(self, raw):
        with pytest.raises(MalformedRecordError):
            self.lexer.lex(raw)


class TestToRecord:
    """Tests for RecordLexer.to_record."""

    def test_builds_typed_record(self):
        record = RecordLexer().to_record(
            "15:20.957001-3,DBMSSQL,2,OSThread=9952", line_number=7, hour_stamp="21102215"
        )

        assert record.timestamp == datetime(2021, 10, 22, 15, 15, 20, 957001)
        assert record.duration == 3
        assert record.event == "DBMSSQL"
        assert record.level == "2"
        assert record.line_number == 7
        assert dict(record.fields) == {"OSThread": "9952"}

    def test_invalid_hour_stamp(self):
        with pytest.raises(MalformedRecordError):
            RecordLexer().to_record("15:20.957001-3,DBMSSQL,2", 1, "21133215")

    def test_invalid_minutes(self):
        with pytest.raises(MalformedRecordError):
            RecordLexer().to_record("75:20.957001-3,DBMSSQL,2", 1, "21102215")
