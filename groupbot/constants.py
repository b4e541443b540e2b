"""
Fixed thresholds, limits and canned messages.
"""

MONGODB_SERVER_SELECTION_TIMEOUT_MS = 5000

# Knowledge base
DEFAULT_CONFIDENCE = 1.0
RETRIEVAL_MIN_CONFIDENCE = 0.5
KNOWLEDGE_SIMILARITY_THRESHOLD = 0.85
SOURCE_MANUAL = "manual"
SOURCE_ADMIN = "admin"
KNOWLEDGE_SOURCES = (SOURCE_MANUAL, SOURCE_ADMIN)

# Feedback steps (negative feedback suppresses faster than positive reinforces)
POSITIVE_FEEDBACK_STEP = 0.10
NEGATIVE_FEEDBACK_STEP = 0.15

# Response cache
CACHE_SIMILARITY_THRESHOLD = 0.8

# Interactions
INTERACTION_SOURCE_AI = "ai"
FEEDBACK_UNSET = 0
FEEDBACK_POSITIVE = 1
FEEDBACK_NEGATIVE = -1

# Triggers
ALL_TRIGGERS = "all"
NO_RULES = "none"

# Completion workers
COMPLETION_MAX_WORKERS = 8

MAX_QUESTION_LENGTH = 1000
MAX_ANSWER_LENGTH = 4000

FALLBACK_RESPONSES = (
    "I'm having trouble connecting to my AI service right now. Please try again in a moment.",
    "Hmm, I couldn't process that right now. Could you rephrase your question?",
    "I'm experiencing some technical difficulties. An admin will help you shortly!",
    "Sorry, I couldn't understand that. Could you ask in a different way?",
)

SYSTEM_CONTEXT_TEMPLATE = """You are a helpful AI assistant for a Slack channel.
Group Purpose: {purpose}
Tone: {tone}
Rules: {rules}

Answer the user's question naturally and helpfully. Keep responses concise (under 200 words)."""

SETUP_PROMPTS = {
    "purpose": (
        "Let's set up this channel. *Step 1/4*: what is this group about?\n"
        "Example: `Gaming community`, `Tech support`"
    ),
    "tone": (
        "*Step 2/4*: how should I talk to members?\n"
        "Example: `Friendly`, `Professional`, `Casual`"
    ),
    "rules": (
        "*Step 3/4*: list the group rules, separated by commas, or say `none`.\n"
        "Example: `No spam, be respectful`"
    ),
    "triggers": (
        "*Step 4/4*: when should I reply? Say `all` to answer every question, "
        "or list keywords separated by commas.\n"
        "Example: `help, error, issue`"
    ),
}

SETUP_INSTRUCTIONS = """*Setup Instructions*

Mention me with `setup` and I'll ask four short questions, or configure everything at once:

`quicksetup [purpose]|[tone]|[rules]|[triggers]`

1. *Purpose* - what your group is about, e.g. "Gaming community"
2. *Tone* - how I should communicate, e.g. "Friendly"
3. *Rules* - comma-separated, e.g. "No spam, be respectful", or "none"
4. *Triggers* - "all" (answer every question) or keywords, e.g. "help,error,issue"

*Example:*
`quicksetup Gaming community|Friendly|No spam, be nice|all`"""
