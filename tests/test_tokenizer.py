import json

import pytest

from pocket_embed.errors import EmbedError, ErrorKind
from pocket_embed.tokenizer import Vocabulary, load_vocabulary, tokenize, wordpiece

from conftest import VOCAB, tokenizer_payloads


def test_hello_splits_into_prefix_and_continuation(vocab):
    encoded = tokenize("hello", vocab, max_length=6)
    assert encoded.input_ids == [4, 1, 2, 5, 0, 0]
    assert encoded.attention_mask == [1, 1, 1, 1, 0, 0]
    assert encoded.segment_ids is None


def test_empty_text_is_cls_sep_then_padding(vocab):
    encoded = tokenize("", vocab, max_length=5)
    assert encoded.input_ids == [4, 5, 0, 0, 0]
    assert encoded.attention_mask == [1, 1, 0, 0, 0]


def test_whitespace_only_text_behaves_like_empty(vocab):
    assert tokenize(" \t\n ", vocab, 4).input_ids == [4, 5, 0, 0]


@pytest.mark.parametrize(
    "text",
    ["", "hello", "hello world", "zzz qqq", "hello " * 50, "unbelievable hello"],
)
@pytest.mark.parametrize("max_length", [1, 2, 3, 6, 16])
def test_length_and_mask_invariant(vocab, text, max_length):
    encoded = tokenize(text, vocab, max_length)
    assert len(encoded.input_ids) == max_length
    assert len(encoded.attention_mask) == max_length
    for token_id, mask in zip(encoded.input_ids, encoded.attention_mask):
        assert mask == (0 if token_id == vocab.pad_id else 1)


def test_whole_word_match_wins(vocab):
    assert wordpiece("world", vocab) == ["world"]


def test_multiple_continuations(vocab):
    assert wordpiece("unbelievable", vocab) == ["un", "##believ", "##able"]


def test_unknown_word_becomes_single_unk(vocab):
    assert wordpiece("xyzzy", vocab) == ["[UNK]"]


def test_partial_match_collapses_word_to_unk(vocab):
    # "hel" matches but the rest "xx" does not
    assert wordpiece("helxx world", vocab) == ["[UNK]", "world"]


def test_continuation_not_used_for_word_start(vocab):
    # "##lo" exists but "lo" alone at the start of a word is not a match
    assert wordpiece("lo", vocab) == ["[UNK]"]


def test_lowercase_flag():
    lower = Vocabulary.from_mapping(VOCAB, lowercase=True)
    cased = Vocabulary.from_mapping(VOCAB)
    assert wordpiece("HELLO", lower) == ["hel", "##lo"]
    assert wordpiece("HELLO", cased) == ["[UNK]"]


def test_truncation_keeps_sep_at_end(vocab):
    encoded = tokenize("world world world world", vocab, max_length=4)
    assert encoded.input_ids == [4, 6, 6, 5]


def test_hard_truncation_without_truncation_flag(vocab):
    encoded = tokenize("world world world world", vocab, max_length=4, truncation=False)
    assert encoded.input_ids == [4, 6, 6, 5]
    assert encoded.attention_mask == [1, 1, 1, 1]


def test_segment_ids_are_zero(vocab):
    encoded = tokenize("hello", vocab, max_length=6, segment_ids=True)
    assert encoded.segment_ids == [0] * 6


def test_missing_unknown_token_falls_back_to_zero():
    vocabulary = Vocabulary.from_mapping({"[CLS]": 1, "[SEP]": 2, "[PAD]": 0})
    assert tokenize("nothing", vocabulary, 4).input_ids == [1, 0, 2, 0]


def test_missing_pad_token_masks_padding_slots():
    vocabulary = Vocabulary.from_mapping({"a": 0, "[UNK]": 3, "[CLS]": 4, "[SEP]": 5})
    encoded = tokenize("a", vocabulary, 6)
    assert encoded.input_ids == [4, 0, 5, 3, 3, 3]
    assert encoded.attention_mask == [1, 1, 1, 0, 0, 0]


def test_invalid_max_length(vocab):
    with pytest.raises(ValueError):
        tokenize("hello", vocab, 0)


# ----- loading --------------------------------------------------------------
def _write(tmp_path, payloads):
    for name, body in payloads.items():
        (tmp_path / name).write_text(body, encoding="utf-8")
    return tmp_path


def test_load_vocabulary_from_artifacts(tmp_path):
    vocabulary = load_vocabulary(_write(tmp_path, tokenizer_payloads()))
    assert vocabulary.lowercase is True
    assert vocabulary.pad_token == "[PAD]"
    assert vocabulary.unk_id == 3
    assert tokenize("HELLO", vocabulary, 6).input_ids == [4, 1, 2, 5, 0, 0]


def test_load_unigram_vocab_list(tmp_path):
    payloads = tokenizer_payloads()
    pieces = [["<pad>", 0.0], ["<s>", 0.0], ["</s>", 0.0], ["<unk>", 0.0], ["hi", -1.0]]
    payloads["tokenizer.json"] = json.dumps({"model": {"type": "Unigram", "vocab": pieces}})
    payloads["tokenizer_config.json"] = json.dumps(
        {"cls_token": "<s>", "sep_token": "</s>", "pad_token": "<pad>", "unk_token": "<unk>"}
    )
    vocabulary = load_vocabulary(_write(tmp_path, payloads))
    assert tokenize("hi there", vocabulary, 5).input_ids == [1, 4, 3, 2, 0]


def test_missing_special_tokens_use_defaults(tmp_path):
    payloads = tokenizer_payloads()
    payloads["tokenizer_config.json"] = "{}"
    del payloads["special_tokens_map.json"]
    vocabulary = load_vocabulary(_write(tmp_path, payloads))
    assert (vocabulary.cls_token, vocabulary.sep_token) == ("[CLS]", "[SEP]")
    assert vocabulary.lowercase is False


@pytest.mark.parametrize(
    "name, body",
    [
        ("tokenizer.json", "{not json"),
        ("tokenizer.json", json.dumps({"model": {}})),
        ("tokenizer.json", json.dumps({"model": {"vocab": {"a": "one"}}})),
        ("tokenizer_config.json", "[1, 2]"),
    ],
)
def test_malformed_artifacts_raise_parse_failure(tmp_path, name, body):
    payloads = tokenizer_payloads()
    payloads[name] = body
    with pytest.raises(EmbedError) as exc:
        load_vocabulary(_write(tmp_path, payloads))
    assert exc.value.kind is ErrorKind.VOCABULARY_PARSE_FAILURE


def test_missing_artifact_raises_parse_failure(tmp_path):
    with pytest.raises(EmbedError) as exc:
        load_vocabulary(tmp_path)
    assert exc.value.kind is ErrorKind.VOCABULARY_PARSE_FAILURE
