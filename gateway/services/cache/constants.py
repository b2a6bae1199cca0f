"""Cache key prefixes and question classes."""

# Response cache: bot:{bot}:{class}:[{style}-{level}:]{fingerprint}
KEY_PREFIX_RESPONSE = "bot"

# Rate limit windows: rate:{scope}:{id}
KEY_PREFIX_RATE = "rate"

CLASS_GENERIC = "generic"
CLASS_TECHNICAL = "technical"
CLASS_REGULATORY = "regulatory"
CLASS_PERSONALIZED = "personalized"

QUESTION_CLASSES = (CLASS_GENERIC, CLASS_TECHNICAL, CLASS_REGULATORY, CLASS_PERSONALIZED)

FINGERPRINT_LENGTH = 16
