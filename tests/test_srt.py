from dual_subtitles.srt import (
    Cue,
    decode_subtitle_bytes,
    ms_to_timestamp,
    parse_srt,
    serialize_srt,
    shift_cues,
)


SAMPLE = (
    "1\n"
    "00:00:01,000 --> 00:00:02,500\n"
    "Hello\n"
    "\n"
    "2\n"
    "00:00:03,000 --> 00:00:04,000\n"
    "Two\n"
    "lines\n"
)


def test_parse_basic_document():
    cues = parse_srt(SAMPLE)
    assert [(c.start, c.end) for c in cues] == [(1000, 2500), (3000, 4000)]
    assert cues[0].lines == ["Hello"]
    assert cues[1].text == "Two\nlines"


def test_serialize_parse_round_trip():
    cues = parse_srt(SAMPLE)
    again = parse_srt(serialize_srt(cues))
    assert [(c.start, c.end, c.lines) for c in again] == [(c.start, c.end, c.lines) for c in cues]


def test_serialize_format_and_renumbering():
    out = serialize_srt([Cue(index=7, start=0, end=1001, lines=["a"]), Cue(index=9, start=3_723_004, end=3_723_005, lines=["b"])])
    assert out == "1\n00:00:00,000 --> 00:00:01,001\na\n\n2\n01:02:03,004 --> 01:02:03,005\nb\n"


def test_parse_handles_bom_crlf_and_blank_padding():
    raw = "\ufeff\r\n\r\n1\r\n00:00:01,000 --> 00:00:02,000\r\nHi\r\n\r\n\r\n\r\n2\r\n00:00:03,000 --> 00:00:04,000\r\nThere\r\n"
    cues = parse_srt(raw)
    assert [c.text for c in cues] == ["Hi", "There"]


def test_parse_skips_malformed_blocks():
    raw = (
        "1\n00:00:01,000 --> 00:00:02,000\nok\n\n"
        "x\n00:00:02,000 --> 00:00:03,000\nbad ordinal\n\n"
        "3\n00:00:03 --> 00:00:04,000\nbad timestamp\n\n"
        "4\n00:00:05,000 --> 00:00:04,000\ninverted\n\n"
        "5\n00:00:06,000 --> 00:00:07,000\n\n"
        "6\n00:00:08,000 --> 00:00:09,000\nlast\n"
    )
    cues = parse_srt(raw)
    assert [c.text for c in cues] == ["ok", "last"]


def test_parse_accepts_dot_separator_and_sorts():
    raw = "2\n00:00:05.000 --> 00:00:06.000\nlater\n\n1\n00:00:01,000 --> 00:00:02,000\nearlier\n"
    cues = parse_srt(raw)
    assert [c.text for c in cues] == ["earlier", "later"]


def test_parse_empty_input():
    assert parse_srt("") == []
    assert parse_srt("   \n\n  ") == []
    assert parse_srt("not a subtitle") == []


def test_ms_to_timestamp_clamps_negative():
    assert ms_to_timestamp(-5) == "00:00:00,000"
    assert ms_to_timestamp(59_999) == "00:00:59,999"


def test_shift_cues_clamps_and_drops():
    cues = [Cue(1, 100, 400, ["a"]), Cue(2, 1000, 2000, ["b"])]
    shifted = shift_cues(cues, -500)
    assert [(c.start, c.end) for c in shifted] == [(500, 1500)]
    shifted = shift_cues(cues, -200)
    assert [(c.start, c.end) for c in shifted] == [(0, 200), (800, 1800)]
    # input untouched
    assert cues[0].start == 100


def test_decode_subtitle_bytes_utf8_and_legacy():
    assert decode_subtitle_bytes("Ça va?".encode("utf-8")) == "Ça va?"
    assert decode_subtitle_bytes(b"") == ""
    legacy = ("1\n00:00:01,000 --> 00:00:02,000\n¿Qué tal? Él está aquí, señor.\n" * 5).encode("cp1252")
    text = decode_subtitle_bytes(legacy)
    assert "00:00:01,000" in text
    assert "\ufffd" not in text
