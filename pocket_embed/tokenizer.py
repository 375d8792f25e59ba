# ── stdlib ────────────────────────────────────────────────────────────
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from pocket_embed.errors import EmbedError, ErrorKind

logger = logging.getLogger(__name__)

CONTINUATION = "##"
TOKENIZER_FILES = ("tokenizer_config.json", "tokenizer.json", "special_tokens_map.json")

DEFAULT_SPECIALS = {
    "unk_token": "[UNK]",
    "pad_token": "[PAD]",
    "cls_token": "[CLS]",
    "sep_token": "[SEP]",
}


# ── VOCABULARY ────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Vocabulary:
    """token → id table plus the special tokens of one model family."""

    vocab: dict[str, int]
    unk_token: str = "[UNK]"
    pad_token: str = "[PAD]"
    cls_token: str = "[CLS]"
    sep_token: str = "[SEP]"
    lowercase: bool = False
    continuation: str = CONTINUATION

    @classmethod
    def from_mapping(cls, vocab: dict[str, int], **specials) -> "Vocabulary":
        return cls(vocab=dict(vocab), **specials)

    def __contains__(self, token: str) -> bool:
        return token in self.vocab

    def __len__(self) -> int:
        return len(self.vocab)

    @property
    def unk_id(self) -> int:
        return self.vocab.get(self.unk_token, 0)

    @property
    def pad_id(self) -> int:
        # a missing pad entry resolves to the unknown id, like any other token
        return self.id_of(self.pad_token)

    def id_of(self, token: str) -> int:
        return self.vocab.get(token, self.unk_id)


@dataclass(frozen=True)
class TokenizedInput:
    input_ids: list[int]
    attention_mask: list[int]
    segment_ids: list[int] | None = field(default=None)

    def __len__(self) -> int:
        return len(self.input_ids)


# ── LOADING ───────────────────────────────────────────────────────────
def _special(value, default: str) -> str:
    # tokenizer_config.json stores specials either as a bare string or as an
    # AddedToken object {"content": "[CLS]", ...}
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict) and isinstance(value.get("content"), str):
        return value["content"]
    return default


def _read_json(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise EmbedError(
            ErrorKind.VOCABULARY_PARSE_FAILURE, f"missing vocabulary artifact {path}"
        ) from e
    except (OSError, ValueError) as e:
        raise EmbedError(
            ErrorKind.VOCABULARY_PARSE_FAILURE, f"cannot parse {path.name}: {e}"
        ) from e
    if not isinstance(data, dict):
        raise EmbedError(
            ErrorKind.VOCABULARY_PARSE_FAILURE, f"{path.name} is not a JSON object"
        )
    return data


def _vocab_table(raw) -> dict[str, int]:
    # WordPiece: {"token": id}. Unigram: [["piece", score], ...] with the
    # list position as the id.
    if isinstance(raw, dict):
        if not all(isinstance(v, int) and not isinstance(v, bool) for v in raw.values()):
            raise ValueError("vocabulary ids must be integers")
        return {str(k): v for k, v in raw.items()}
    if isinstance(raw, list):
        table: dict[str, int] = {}
        for idx, item in enumerate(raw):
            piece = item[0] if isinstance(item, (list, tuple)) and item else item
            if not isinstance(piece, str):
                raise ValueError(f"vocabulary entry {idx} has no token string")
            table.setdefault(piece, idx)
        return table
    raise ValueError("model.vocab is neither a mapping nor a list")


def load_vocabulary(tokenizer_dir: str | Path) -> Vocabulary:
    """
    Build a Vocabulary from the Hugging Face tokenizer artifacts in
    ``tokenizer_dir``. Raises EmbedError(VOCABULARY_PARSE_FAILURE).
    """
    tokenizer_dir = Path(tokenizer_dir)
    config = _read_json(tokenizer_dir / "tokenizer_config.json")
    data = _read_json(tokenizer_dir / "tokenizer.json")

    specials_map = {}
    specials_path = tokenizer_dir / "special_tokens_map.json"
    if specials_path.exists():
        specials_map = _read_json(specials_path)

    model = data.get("model")
    if not isinstance(model, dict) or "vocab" not in model:
        raise EmbedError(
            ErrorKind.VOCABULARY_PARSE_FAILURE, "tokenizer.json has no model.vocab"
        )
    try:
        table = _vocab_table(model["vocab"])
    except (TypeError, ValueError, IndexError) as e:
        raise EmbedError(
            ErrorKind.VOCABULARY_PARSE_FAILURE, f"bad model.vocab: {e}"
        ) from e
    if not table:
        raise EmbedError(ErrorKind.VOCABULARY_PARSE_FAILURE, "model.vocab is empty")

    specials = {
        name: _special(config.get(name, specials_map.get(name)), default)
        for name, default in DEFAULT_SPECIALS.items()
    }
    prefix = model.get("continuing_subword_prefix") or CONTINUATION
    vocabulary = Vocabulary(
        vocab=table,
        lowercase=bool(config.get("do_lower_case", False)),
        continuation=prefix,
        **specials,
    )
    logger.info(
        "loaded vocabulary from %s: %d tokens, lowercase=%s",
        tokenizer_dir, len(vocabulary), vocabulary.lowercase,
    )
    return vocabulary


# ── WORDPIECE ─────────────────────────────────────────────────────────
def _split_word(word: str, vocabulary: Vocabulary) -> list[str]:
    if word in vocabulary:
        return [word]

    pieces: list[str] = []
    rest = word
    while rest:
        for end in range(len(rest), 0, -1):
            prefix = rest[:end]
            if prefix in vocabulary:
                pieces.append(prefix)
                break
            continued = vocabulary.continuation + prefix
            if pieces and continued in vocabulary:
                pieces.append(continued)
                break
        else:
            # nothing matched: the whole word is one unknown token
            return [vocabulary.unk_token]
        rest = rest[end:]
    return pieces


def wordpiece(text: str, vocabulary: Vocabulary) -> list[str]:
    """Greedy longest-match segmentation, no special tokens added."""
    if vocabulary.lowercase:
        text = text.lower()
    tokens: list[str] = []
    for word in text.split():
        tokens.extend(_split_word(word, vocabulary))
    return tokens


def tokenize(
    text: str,
    vocabulary: Vocabulary,
    max_length: int,
    truncation: bool = True,
    segment_ids: bool = False,
) -> TokenizedInput:
    """
    Encode ``text`` into exactly ``max_length`` ids:
    [CLS] + word pieces + [SEP], right padded with [PAD].
    """
    if max_length < 1:
        raise ValueError("max_length must be >= 1")

    pieces = wordpiece(text, vocabulary)
    if truncation:
        pieces = pieces[: max(max_length - 2, 0)]

    tokens = [vocabulary.cls_token, *pieces, vocabulary.sep_token]
    if len(tokens) > max_length:
        tokens = tokens[:max_length]
        tokens[-1] = vocabulary.sep_token
    tokens += [vocabulary.pad_token] * (max_length - len(tokens))

    pad_id = vocabulary.pad_id
    input_ids = [vocabulary.id_of(t) for t in tokens]
    attention_mask = [0 if i == pad_id else 1 for i in input_ids]
    return TokenizedInput(
        input_ids=input_ids,
        attention_mask=attention_mask,
        segment_ids=[0] * max_length if segment_ids else None,
    )
