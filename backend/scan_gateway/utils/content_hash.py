import hashlib
import json
import unicodedata
from typing import Any, Iterable, Optional, Union


# Typographic characters AI text and user input tend to carry
QUOTE_DASH_MAP = str.maketrans({
    '‘': "'",  # left single quote
    '’': "'",  # right single quote
    '‚': "'",
    '‛': "'",
    '′': "'",  # prime
    '“': '"',  # left double quote
    '”': '"',  # right double quote
    '„': '"',
    '‟': '"',
    '″': '"',
    '«': '"',
    '»': '"',
    '‐': '-',  # hyphen
    '‑': '-',
    '‒': '-',
    '–': '-',  # en dash
    '—': '-',  # em dash
    '―': '-',
    '−': '-',  # minus sign
})

LANGUAGE_FAMILIES = {
    'en': 'latin',
    'es': 'latin',
    'fr': 'latin',
    'de': 'latin',
    'pt': 'latin',
    'it': 'latin',
    'nl': 'latin',
    'zh': 'cjk',
    'ja': 'cjk',
    'ko': 'cjk',
    'hi': 'indic',
    'ar': 'arabic',
    'ru': 'cyrillic',
    'uk': 'cyrillic',
}

# Payload keys carrying user-typed text (case and accents do not matter)
FREE_TEXT_FIELDS = frozenset({
    'focus',
    'focusItem',
    'focus_item',
    'context',
    'additionalContext',
    'additional_context',
    'query',
    'productName',
    'product_name',
})


def generate_content_hash(content: Union[str, bytes]) -> str:
    """
    Generate SHA-256 hash of content

    Args:
        content: Text or bytes to hash

    Returns:
        Hexadecimal hash string
    """
    if isinstance(content, str):
        content = content.encode('utf-8')

    return hashlib.sha256(content).hexdigest()


def normalize_text(text: str, fold: bool = True) -> str:
    """
    Normalize text so semantically identical inputs hash identically

    Args:
        text: Raw text
        fold: Also strip diacritics and lowercase (free text only;
            ids, URLs and encoded data keep their case)

    Returns:
        Text with smart quotes/dashes mapped to ASCII and whitespace
        collapsed, folded when requested
    """
    normalized = unicodedata.normalize('NFKC', text).translate(QUOTE_DASH_MAP)

    if fold:
        # Strip diacritics (decompose, drop combining marks)
        decomposed = unicodedata.normalize('NFD', normalized)
        normalized = ''.join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()

    # Remove extra whitespace (also folds \r, \n, \t)
    return ' '.join(normalized.split())


def language_family(language_code: Optional[str]) -> str:
    """
    Map a language code to its family so cache keys are not over-split

    Args:
        language_code: ISO code such as 'en', 'pt-BR' (None means 'en')

    Returns:
        Family name, 'latin' when unknown
    """
    if not language_code:
        return 'latin'
    base = language_code.split('-')[0].split('_')[0].lower()
    return LANGUAGE_FAMILIES.get(base, 'latin')


def canonicalize_payload(value: Any, free_text_fields: Iterable[str] = FREE_TEXT_FIELDS, _fold: bool = False) -> Any:
    """
    Convert a request payload into a canonical, JSON-serializable form

    Strings are normalized, and strings under a key named in
    free_text_fields (at any depth) are also lowercased with diacritics
    stripped. All other strings keep their case, so ids, URLs and base64
    data stay distinct. Bytes (image data and other binary content) are
    replaced by their SHA-256 so they are kept exact, mappings are rebuilt
    with string keys and sequences become lists.
    """
    free_text_fields = frozenset(free_text_fields)

    if isinstance(value, str):
        return normalize_text(value, fold=_fold)
    if isinstance(value, (bytes, bytearray)):
        return f"sha256:{generate_content_hash(bytes(value))}"
    if isinstance(value, dict):
        return {
            str(key): canonicalize_payload(item, free_text_fields, _fold or str(key) in free_text_fields)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [canonicalize_payload(item, free_text_fields, _fold) for item in value]
    if value is None or isinstance(value, (bool, int, float)):
        return value
    raise TypeError(f"Unsupported payload value of type {type(value).__name__}")


def build_cache_key(
    prompt_template_id: str,
    prompt_version: str,
    model: str,
    provider: str,
    request_payload: Any,
    free_text_fields: Iterable[str] = FREE_TEXT_FIELDS
) -> str:
    """
    Build the content hash identifying a cached AI response

    Args:
        prompt_template_id: Prompt template identifier
        prompt_version: Prompt template version
        model: Model name
        provider: Provider name
        request_payload: Request content (dicts, lists, strings, bytes, scalars)
        free_text_fields: Payload keys holding user-typed text, matched
            case- and accent-insensitively

    Returns:
        64-character SHA-256 hex digest, stable across processes
    """
    canonical = {
        'tpl': prompt_template_id.strip(),
        'ver': prompt_version.strip(),
        'model': model.strip(),
        'provider': provider.strip(),
        'payload': canonicalize_payload(request_payload, free_text_fields),
    }
    serialized = json.dumps(canonical, sort_keys=True, separators=(',', ':'), ensure_ascii=False)

    return generate_content_hash(serialized)
