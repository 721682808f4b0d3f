"""
Intent Classifier Repository.

Local heuristic that recognizes greetings and small talk so they are
answered with a canned message instead of going through SQL generation.
No I/O, no model call.
"""

from typing import Tuple

# Messages equal to one of these, or starting with one followed by a space, are small talk
GREETINGS: Tuple[str, ...] = (
    "bonjour",
    "salut",
    "hello",
    "hi",
    "coucou",
    "bonsoir",
    "merci",
    "au revoir",
    "bye",
    "ok",
    "oui",
    "non",
    "d'accord",
    "super",
    "parfait",
)

# A short message containing one of these is still treated as a question
QUERY_KEYWORDS: Tuple[str, ...] = (
    "montre",
    "donne",
    "affiche",
    "liste",
    "combien",
    "trouve",
    "cherche",
    "quels",
    "quelles",
    "qui",
    "prospects",
    "rdv",
    "taches",
    "conseillers",
    "patrimoine",
    "revenus",
    "chaud",
    "tiede",
    "froid",
)

GREETING_RESPONSE = """Bonjour ! Je suis l'assistant Ultron. Je peux vous aider a interroger vos donnees CRM.

Voici quelques exemples de questions que vous pouvez me poser:
- "Montre moi les prospects chauds"
- "Combien de RDV cette semaine?"
- "Prospects sans conseiller assigne"
- "Top 5 par patrimoine"

Comment puis-je vous aider ?"""

THANKS_RESPONSE = "Je vous en prie ! N'hesitez pas si vous avez d'autres questions sur vos prospects."

FAREWELL_RESPONSE = "A bientot ! N'hesitez pas a revenir si vous avez besoin d'aide."

DEFAULT_RESPONSE = "Je suis pret a vous aider ! Posez-moi une question sur vos prospects, RDV, ou taches."


class IntentClassifier:
    """Short-circuits greetings and small talk."""

    def __init__(self, non_query_max_length: int = 10):
        self.non_query_max_length = non_query_max_length

    def is_non_query(self, message: str) -> bool:
        """
        Return True when the message is a greeting or too short to be a question.

        A message is small talk when it equals a greeting or starts with a
        greeting followed by a space ("merci beaucoup"), or when it is
        shorter than non_query_max_length and contains no query keyword.
        """
        text = message.lower().strip()

        if any(text == greeting or text.startswith(greeting + " ") for greeting in GREETINGS):
            return True

        if len(text) < self.non_query_max_length and not any(word in text for word in QUERY_KEYWORDS):
            return True

        return False

    @staticmethod
    def canned_response(message: str) -> str:
        """Pick the canned answer for a small-talk message. Never empty."""
        text = message.lower().strip()

        if "bonjour" in text or "salut" in text or "hello" in text:
            return GREETING_RESPONSE

        if "merci" in text:
            return THANKS_RESPONSE

        if "au revoir" in text or "bye" in text:
            return FAREWELL_RESPONSE

        return DEFAULT_RESPONSE
