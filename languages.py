"""Language, accent and voice tables for the live agent.

A conversation language is addressed by a language-accent code such as
"english-uk". Each accent maps to one prebuilt voice and, optionally, an
extra style instruction appended to the language's base instruction.
"""

from pathlib import Path

AVAILABLE_VOICES = ("Kore", "Zephyr", "Puck", "Charon", "Fenrir")
DEFAULT_VOICE = "Kore"
DEFAULT_LANGUAGE_ACCENT = "english-us"

# language -> {"name", "accents": {accent: {"name", "voice"}}}
LANGUAGE_OPTIONS = {
    "english": {
        "name": "English",
        "accents": {
            "us": {"name": "American", "voice": "Zephyr"},
            "uk": {"name": "British", "voice": "Puck"},
        },
    },
    "malay": {
        "name": "Malay",
        "accents": {
            "my": {"name": "Standard", "voice": "Kore"},
        },
    },
    "spanish": {
        "name": "Spanish",
        "accents": {
            "es": {"name": "Spain", "voice": "Charon"},
            "mx": {"name": "Mexican", "voice": "Kore"},
        },
    },
    "french": {
        "name": "French",
        "accents": {
            "fr": {"name": "France", "voice": "Fenrir"},
            "ca": {"name": "Canadian", "voice": "Zephyr"},
        },
    },
}

BASE_INSTRUCTIONS = {
    "english": (
        "You are a friendly, helpful customer support agent answering questions "
        "about a customer's claim. Answer ONLY from the document provided below. "
        "If you are asked about something the document does not cover, say politely "
        "that you do not have that information. Keep answers short and on topic."
    ),
    "malay": (
        "Anda ialah ejen sokongan pelanggan yang mesra dan sedia membantu, menjawab "
        "soalan mengenai tuntutan pelanggan. Jawab HANYA berdasarkan dokumen di bawah. "
        "Jika ditanya tentang perkara yang tiada dalam dokumen, nyatakan dengan sopan "
        "bahawa anda tidak mempunyai maklumat tersebut. Pastikan jawapan ringkas."
    ),
    "spanish": (
        "Eres un agente de soporte al cliente amable y servicial que responde preguntas "
        "sobre el reclamo de un cliente. Responde SOLO con la informacion del documento "
        "de abajo. Si te preguntan algo que no esta en el documento, indica amablemente "
        "que no tienes esa informacion. Manten respuestas breves y relevantes."
    ),
    "french": (
        "Vous etes un agent de support client aimable et serviable qui repond aux "
        "questions sur la reclamation d'un client. Repondez UNIQUEMENT a partir du "
        "document ci-dessous. Si une question porte sur un sujet absent du document, "
        "indiquez poliment que vous ne disposez pas de cette information. Restez bref."
    ),
}

ACCENT_INSTRUCTIONS = {
    ("english", "uk"): (
        "Use British English spelling and phrasing where appropriate "
        "(e.g. 'organisation', 'full stop')."
    ),
    ("spanish", "es"): "Utiliza el espanol de Espana (castellano).",
    ("spanish", "mx"): "Utiliza el espanol de Mexico.",
    ("french", "fr"): "Utilisez le francais de France.",
    ("french", "ca"): "Utilisez le francais canadien et les expressions quebecoises appropriees.",
}


def parse_language_accent(code: str) -> tuple[str, str]:
    """Split "language-accent" and validate it against LANGUAGE_OPTIONS.

    Raises:
        ValueError: unknown language or accent
    """
    language, _, accent = (code or "").partition("-")
    option = LANGUAGE_OPTIONS.get(language)
    if option is None or accent not in option["accents"]:
        raise ValueError(f"Unknown language-accent code: {code!r}")
    return language, accent


def language_of(code: str) -> str:
    """Language part of a code, without validation."""
    return (code or "").split("-", 1)[0]


def voice_for(code: str) -> str:
    try:
        language, accent = parse_language_accent(code)
    except ValueError:
        return DEFAULT_VOICE
    return LANGUAGE_OPTIONS[language]["accents"][accent]["voice"]


def all_language_accents() -> list[tuple[str, str]]:
    """Return [(code, label)] for every supported language-accent."""
    result = []
    for language, option in LANGUAGE_OPTIONS.items():
        for accent, info in option["accents"].items():
            result.append((f"{language}-{accent}", f"{option['name']} ({info['name']})"))
    return result


def load_document(path) -> str:
    """Read the reference document, or return "" when unset or missing."""
    if not path:
        return ""
    doc_path = Path(path).expanduser()
    if not doc_path.exists():
        return ""
    return doc_path.read_text().strip()


def build_system_instruction(code: str, document: str = "") -> str:
    """Base instruction + accent style + reference document."""
    language, accent = parse_language_accent(code)
    parts = [BASE_INSTRUCTIONS[language]]
    accent_text = ACCENT_INSTRUCTIONS.get((language, accent))
    if accent_text:
        parts.append(accent_text)
    instruction = " ".join(parts)
    if document:
        instruction += f"\n\nHere is the customer's document:\n---\n{document}\n---"
    return instruction
