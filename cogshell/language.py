"""Heuristic language detection and conversation-topic classification.

Both are offline and cheap enough to run on every turn.
"""

from __future__ import annotations

import re
from typing import FrozenSet, NamedTuple, Sequence, Tuple


class DetectedLanguage(NamedTuple):
    language: str
    culture: str


ENGLISH = DetectedLanguage("English", "en-US")
RUSSIAN = DetectedLanguage("Russian", "ru-RU")
ARABIC = DetectedLanguage("Arabic", "ar-SA")
KOREAN = DetectedLanguage("Korean", "ko-KR")
JAPANESE = DetectedLanguage("Japanese", "ja-JP")
CHINESE = DetectedLanguage("Chinese", "zh-CN")

_SPLIT = re.compile(r"[ ,.!?\n\r\t:;\"']+")

_EN: FrozenSet[str] = frozenset(
    """
    the a an this that these those i you he she it we they me him her us them my your his its our their
    is are was were be been being have has had do does did will would could should may might can
    get got make just let know think want and or but not no so as if of on in to for with at by from
    up out into than then over also how what when where who why which all about more here there now very
    well even back still too both each same off such own few new good great
    """.split()
)
_DE: FrozenSet[str] = frozenset(
    """
    ich du er sie es wir ihr ist bin bist sind war waren haben hat habe hast wird werden kann könnte muss
    musst nicht kein keine aber und oder dass wenn weil mit auf von zu in an die der das den dem ein eine
    einen einer einem wie was wer wo wann warum auch schon noch sehr mehr gut ja nein bitte danke hallo
    tschüss natürlich vielleicht immer jetzt hier dort so als bei nach über unter zwischen vor mich mir
    dich dir uns euch sich ihm
    """.split()
)
_FR: FrozenSet[str] = frozenset(
    """
    je tu il elle nous vous ils elles est sont avoir être faire aller pouvoir vouloir savoir voir pas ne
    non oui mais et ou que qui quoi avec sur dans par pour de du la le les un une des ce cette ces mon ma
    mes ton bonjour merci bien très aussi encore déjà toujours comme plus moins peut fait dit suis serait
    moi toi lui leur ici là alors donc car quand comment pourquoi quel quelle tout tous
    """.split()
)
_ES: FrozenSet[str] = frozenset(
    """
    yo tú él ella nosotros vosotros ellos ellas es son estar ser tener hacer ir poder querer sí pero y que
    quien qué cómo cuándo con en del la el los las un una unos unas este esta estos estas mi tu su muy más
    también ya bien hola gracias siempre aquí allí cuando donde porque como todo todos hay tiene tienen
    """.split()
)
_IT: FrozenSet[str] = frozenset(
    """
    io tu lui lei noi voi loro è sono essere avere fare andare potere volere sapere vedere non sì ma che
    chi cosa come con su di la il lo le gli del della dei delle questo questa ciao grazie prego bene molto
    anche già sempre qui lì quando dove perché tutto tutti mi ti si ci vi ne ha hanno ho hai
    """.split()
)
_NL: FrozenSet[str] = frozenset(
    """
    ik jij hij zij wij jullie zijn was waren hebben heeft heb worden kan moet zal zou niet geen maar en of
    dat die wat wie waar met op van te aan de het een ook nog hallo dank goed heel altijd wel al zoals mij
    jou hem haar ons hun ze dit deze hier daar wanneer waarom hoe alles iets
    """.split()
)
# Only words that rarely show up in English text; "a", "o", "de", "e", "se" and friends are left out.
_PT: FrozenSet[str] = frozenset(
    """
    eu tu ele ela nós vós eles elas é são ser estar ter fazer ir poder querer saber ver não sim mas que
    quem como quando com em da do um uma este esta isso aqui já bem muito mais também olá obrigado
    obrigada sempre tudo nada todo lhe lhes meu minha seu sua
    """.split()
)

# Order is the tie-break order between foreign languages.
_FOREIGN: Sequence[Tuple[DetectedLanguage, FrozenSet[str]]] = (
    (DetectedLanguage("German", "de-DE"), _DE),
    (DetectedLanguage("French", "fr-FR"), _FR),
    (DetectedLanguage("Spanish", "es-ES"), _ES),
    (DetectedLanguage("Italian", "it-IT"), _IT),
    (DetectedLanguage("Dutch", "nl-NL"), _NL),
    (DetectedLanguage("Portuguese", "pt-PT"), _PT),
)


def language_for_culture(culture: str) -> str:
    """Language name for a culture code ("de-DE", "de_AT" or "de"); the code itself when unknown."""
    code = (culture or "").strip()
    primary = code.replace("_", "-").split("-")[0].lower()
    known = (ENGLISH, RUSSIAN, ARABIC, KOREAN, JAPANESE, CHINESE) + tuple(lang for lang, _ in _FOREIGN)
    for lang in known:
        if lang.culture.split("-")[0].lower() == primary:
            return lang.language
    return code


def _any_in(text: str, lo: str, hi: str) -> bool:
    return any(lo <= ch <= hi for ch in text)


def detect_language(text: str) -> DetectedLanguage:
    """Best guess at the language of `text`; English when short or ambiguous."""
    if not text or not text.strip() or len(text) < 3:
        return ENGLISH

    # Non-Latin scripts are unambiguous enough to decide on a single character.
    if _any_in(text, "\u0400", "\u04ff"):
        return RUSSIAN
    if _any_in(text, "\u0600", "\u06ff"):
        return ARABIC
    if _any_in(text, "\uac00", "\ud7af"):
        return KOREAN
    has_kana = _any_in(text, "\u3040", "\u30ff")
    if has_kana:
        return JAPANESE
    if _any_in(text, "\u4e00", "\u9fff"):
        return CHINESE

    ws = [w for w in _SPLIT.split(text.lower()) if w]
    if not ws:
        return ENGLISH

    en = sum(1 for w in ws if w in _EN)
    scored = [(lang, sum(1 for w in ws if w in vocab)) for lang, vocab in _FOREIGN]
    best = max(s for _, s in scored)
    # Foreign needs two hits and has to beat English outright.
    if best < 2 or en >= best:
        return ENGLISH
    for lang, s in scored:
        if s == best:
            return lang
    return ENGLISH


_TOPIC_LADDER: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("code", ("code", "function", "class", "bug", "error", "compile", "debug", "algorithm", "implement", "program")),
    ("mathematical", ("math", "equation", "formula", "calculate", "statistics", "probability", "geometry", "algebra")),
    ("technical", ("science", "physics", "chemistry", "biology", "neural", "quantum", "technical", "architecture")),
    ("analytical", ("analyze", "analyse", "compare", "evaluate", "assess", "review", "examine")),
    ("emotional", ("feel", "feeling", "emotion", "heart", "hurt", "love", "hate", "sad", "angry", "anxious", "lonely")),
    ("supportive", ("help me", "support", "struggling", "hard time", "cant cope", "worried about")),
    ("empathetic", ("empathy", "understand me", "listen", "relate")),
    ("philosophical", ("philosophy", "ethics", "meaning", "purpose", "existence", "consciousness", "reality", "truth")),
    ("abstract", ("think about", "reflect", "wonder", "ponder", "contemplate", "abstract", "concept")),
    ("introspective", ("myself", "introspect", "inner self", "who am i", "my identity")),
    ("creative", ("imagine", "creative", "story", "design", "art", "music", "write", "invent")),
    ("playful", ("fun", "joke", "laugh", "play", "game", "silly", "humor", "funny")),
    ("confrontational", ("debate", "argue", "disagree", "challenge", "wrong", "prove")),
    ("engaging", ("what do you think", "your opinion", "tell me", "explain", "discuss")),
)


def classify_topic(text: str) -> str:
    """First matching topic on a fixed keyword ladder (substring match), or ""."""
    lower = (text or "").lower()
    for topic, keys in _TOPIC_LADDER:
        if any(k in lower for k in keys):
            return topic
    return ""
