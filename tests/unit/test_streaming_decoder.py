import pytest

from i18n_flow.parsers.base import MalformedResponse, ParsedItem, VerificationFailed
from i18n_flow.parsers.streaming import StreamingItemDecoder, prepare
from i18n_flow.parsers.tokenizer import ItemAssembler, Token, TokenType, tokenize

RESPONSE = (
    "<item><key>k1</key><trx><![CDATA[Hello <b>there</b>]]></trx></item>\n"
    "<item><key>k2</key><trx><![CDATA[World & \"more\"]]></trx>"
    "<comment><![CDATA[kept the quotes]]></comment></item>\n"
    "<item><key>k3</key><trx>plain &amp; escaped</trx></item>"
)

EXPECTED = [
    ParsedItem("k1", "Hello <b>there</b>"),
    ParsedItem("k2", 'World & "more"', "kept the quotes"),
    ParsedItem("k3", "plain & escaped"),
]


@pytest.mark.unit
def test_tokenize_basic_markup():
    tokens, consumed = tokenize("<A>text<b/></a>")
    assert tokens == [
        Token(TokenType.OPEN, "a"),
        Token(TokenType.TEXT, "text"),
        Token(TokenType.OPEN, "b"),
        Token(TokenType.CLOSE, "b"),
        Token(TokenType.CLOSE, "a"),
    ]
    assert consumed == len("<A>text<b/></a>")


@pytest.mark.unit
def test_tokenize_stops_at_incomplete_construct():
    tokens, consumed = tokenize("<a><![CDATA[abc")
    assert tokens == [Token(TokenType.OPEN, "a")]
    assert consumed == 3

    tokens, _ = tokenize("<a><!-- note --><b")
    assert tokens == [Token(TokenType.OPEN, "a")]


@pytest.mark.unit
def test_tokenize_bare_less_than_is_text():
    tokens, _ = tokenize("<a>1 < 2</a>")
    assert [t.type for t in tokens] == [
        TokenType.OPEN,
        TokenType.TEXT,
        TokenType.TEXT,
        TokenType.TEXT,
        TokenType.CLOSE,
    ]
    assert "".join(t.value for t in tokens if t.type is TokenType.TEXT) == "1 < 2"


@pytest.mark.unit
def test_assembler_abandons_interrupted_item():
    tokens, _ = tokenize(
        "<item><key>a</key><item><key>b</key><trx><![CDATA[B]]></trx></item>"
    )
    assert ItemAssembler().assemble(tokens) == [ParsedItem("b", "B")]


@pytest.mark.unit
def test_prepare_wraps_and_trims():
    assert prepare("no markup here") == ""
    assert prepare("Sure!\n<item></item>\nDone.") == "<translations><item></item></translations>"
    assert prepare("<translations><item/></translations>") == "<translations><item/></translations>"
    assert prepare('<item>\\"x\\"</item>') == '<translations><item>"x"</item></translations>'


@pytest.mark.unit
def test_decoder_parses_full_response():
    decoder = StreamingItemDecoder()
    assert decoder.parse(RESPONSE) == EXPECTED
    assert decoder.verify(["k1", "k2", "k3"]) == EXPECTED


@pytest.mark.unit
def test_decoder_result_is_independent_of_fragment_boundaries():
    for size in range(1, len(RESPONSE) + 1):
        decoder = StreamingItemDecoder()
        delivered = []
        for idx in range(0, len(RESPONSE), size):
            delivered.extend(decoder.add_chunk(RESPONSE[idx:idx + size]))
        assert delivered == EXPECTED, f"fragment size {size}"


@pytest.mark.unit
def test_decoder_delivers_each_key_at_most_once():
    seen = []
    decoder = StreamingItemDecoder(on_item=seen.append)
    first = "<item><key>k1</key><trx><![CDATA[First]]></trx></item>"
    decoder.add_chunk(first)
    decoder.add_chunk(first.replace("First", "Second"))
    decoder.add_chunk("")
    assert seen == [ParsedItem("k1", "First")]
    assert decoder.items == seen


@pytest.mark.unit
def test_decoder_reports_pending_key_before_item():
    events = []
    decoder = StreamingItemDecoder(
        on_item=lambda item: events.append(("item", item.key)),
        on_started=lambda key: events.append(("started", key)),
    )
    assert decoder.add_chunk("<item><key>k1</key><trx><![CDATA[Hel") == []
    assert decoder.pending_key == "k1"
    assert events == [("started", "k1")]

    decoder.add_chunk("lo]]></trx></item>")
    assert decoder.pending_key is None
    assert events == [("started", "k1"), ("item", "k1")]


@pytest.mark.unit
def test_decoder_handles_declaration_and_noise():
    text = '```xml\n<?xml version="1.0"?><translations>' + RESPONSE + "</translations>\n```"
    assert StreamingItemDecoder().parse(text) == EXPECTED


@pytest.mark.unit
def test_decoder_unescapes_quotes():
    decoder = StreamingItemDecoder()
    items = decoder.parse('<item><key>k1</key><trx><![CDATA[Say \\"hi\\"]]></trx></item>')
    assert items == [ParsedItem("k1", 'Say "hi"')]


@pytest.mark.unit
def test_decoder_verify_errors():
    decoder = StreamingItemDecoder()
    decoder.add_chunk("Sorry, I cannot translate that.")
    assert decoder.is_malformed
    with pytest.raises(MalformedResponse) as excinfo:
        decoder.verify(["k1"])
    assert "Sorry" in excinfo.value.raw

    decoder.reset()
    decoder.add_chunk("<item><key>zzz</key><trx>x</trx></item>")
    with pytest.raises(VerificationFailed) as failed:
        decoder.verify(["k1"])
    assert failed.value.keys == ["zzz"]

    assert StreamingItemDecoder().verify(["k1"]) == []


@pytest.mark.unit
def test_parsed_item_dict_omits_missing_comment():
    assert ParsedItem("k", "v").to_dict() == {"key": "k", "translation": "v"}
    assert ParsedItem("k", "v", "c").to_dict()["comment"] == "c"
