"""System prompts and message builders for every generator call.

Prompts that expect structured output spell out the exact JSON shape; the
caller still validates whatever comes back.
"""

from __future__ import annotations

from collections.abc import Sequence

from card_advisor.models.card_models import CardEmbedding, card_to_text


# =============================================================================
# Classification Prompts
# =============================================================================

PREVIOUS_CARDS_PROMPT = """You are a credit card assistant. Decide whether the user's \
question is about cards that were ALREADY shown or recommended to them, rather than a \
request for new recommendations.

Return JSON: {"is_about_previous_cards": true/false, "reason": "brief explanation"}

Return true when the question:
- Refers to "these cards", "any of these", "the cards above", "the cards you showed"
- Asks about features or benefits of the cards that were already recommended
- Compares the previously shown cards against each other

Return false when the question:
- Asks for new recommendations ("what cards", "show me cards", "recommend cards")
- Does not refer to previously shown cards

Examples:
- "Do any of these cards have rotating bonus categories?" -> {"is_about_previous_cards": true}
- "Which of these has the best travel insurance?" -> {"is_about_previous_cards": true}
- "Show me cards with no annual fee" -> {"is_about_previous_cards": false}
- "What's the best travel card?" -> {"is_about_previous_cards": false}"""


SPECIFIC_CARD_PROMPT = """You are a credit card assistant. Decide whether the user is \
asking about ONE specific credit card by name AND wants to see that card's information.

Return JSON: {"is_specific_card": true/false, "card_name": "extracted card name or null"}

Return true only if BOTH hold:
1. The user names exactly one card explicitly
2. The user wants to see information about that card, not a general question that \
merely mentions it

True examples:
- "Tell me about the Chase Sapphire Preferred" -> {"is_specific_card": true, "card_name": "Chase Sapphire Preferred"}
- "Chase Freedom Unlimited details" -> {"is_specific_card": true, "card_name": "Chase Freedom Unlimited"}
- "Information about the Capital One Venture card" -> {"is_specific_card": true, "card_name": "Capital One Venture"}

False examples:
- "What's the best travel card?" (asks for a recommendation)
- "Show me the best Chase cards" (asks for several cards)
- "What is the annual fee of Chase Sapphire?" (asks a question about a term)
- "How does the Chase Sapphire Preferred work?" (asks how something works)
- "What does APR mean for the Amex Platinum?" (asks for a definition)

Recommendations, comparisons, multiple cards, definitions and explanations are always \
false, even when a card name appears."""


NEEDS_CARDS_PROMPT = """You are a credit card assistant. Decide whether the user's \
question should be answered with specific credit card recommendations.

Default to needs_cards: true. Only answer false when the question VERY CLEARLY asks \
about a general concept, a definition, or how something works.

Return JSON: {"needs_cards": true/false, "reason": "brief explanation"}

needs_cards: false only for questions like:
- "What is an annual fee?"
- "How do credit cards work?"
- "What's the difference between cash back and points?"
- "Can you explain what APR means?"
- "Tell me about credit scores"

needs_cards: true for anything that could benefit from seeing cards, including:
- "Show me cards with no annual fee"
- "I need a card for groceries"
- "Which card should I get?"
- "Cards for students"
- "What is the best travel card?\""""


# =============================================================================
# Synthesis Prompts
# =============================================================================

RECOMMENDATION_SYSTEM_PROMPT = """You MUST return valid JSON with exactly this structure:
{{
  "summary": "Markdown answer: one opening sentence, then one line per card formatted as - **[Card Name](url)** - 1-2 sentence description, then one closing sentence",
  "cards": [
    {{"credit_card_name": "Exact card name from the candidate cards", "apply_url": "URL from the candidate cards", "reason": "1-2 sentences on why this card fits"}}
  ]
}}

Rules:
- The "cards" array MUST contain exactly {count} cards
- Use EXACT card names and URLs from the candidate cards; never invent cards
- Mention every card from "cards" in the summary, each on its own line, written once
- No subheadings; go straight from the opening sentence to the list
- Keep it conversational and warm"""


RECOMMENDATION_USER_PROMPT = """User question: {query}

Candidate cards:
{candidates}

Recommend the best {count} of these candidate cards for the question and return the \
JSON described above."""


PREVIOUS_CARDS_ANSWER_PROMPT = """You are a helpful credit card assistant. The user is \
asking about cards that were ALREADY shown to them. Answer using ONLY these cards and do \
not mention or recommend any other card.

Return JSON: {"summary": "markdown answer"}

The summary must:
1. Answer the question directly
2. Say which of the shown cards (if any) match, or clearly say that none do
3. Link each card you mention as [Card Name](application_url)"""


PREVIOUS_CARDS_USER_PROMPT = """User question: {query}

Previously shown cards:
{cards}

Answer the question by referencing ONLY these cards."""


SPECIFIC_CARD_ANSWER_PROMPT = """You are a helpful credit card assistant. The user is \
asking about ONE specific credit card. Give detailed, accurate information using only the \
card data provided.

Return JSON: {
  "summary": "markdown answer",
  "card_name": "exact card name from the data",
  "apply_url": "application URL from the data"
}

The summary must:
1. Open with a one-sentence acknowledgment
2. Cover the card's key features, fees, rewards, benefits and requirements
3. Link the card as [Card Name](application_url)
4. Close with one sentence

Use **bold** for emphasis and - bullet points."""


SPECIFIC_CARD_USER_PROMPT = """User question: {query}

Card information:
{card}

Provide detailed information about this card based on the user's question."""


GENERAL_ANSWER_PROMPT = """You are a helpful credit card assistant. Answer the user's \
question about credit cards in a friendly, conversational way in 2-4 sentences. Do not \
recommend specific cards.

Return JSON: {"summary": "your answer"}"""


# =============================================================================
# Auxiliary Prompts
# =============================================================================

TITLE_PROMPT = """Generate a short 2-5 word title describing what the user's credit card \
question is about. Return only the title, with no quotes and no explanation.

Examples: Travel Rewards Cards, No Annual Fee Cards, Groceries & Gas Cards, Student \
Credit Cards, Business Travel Cards"""


SUGGESTIONS_PROMPT = """You are a credit card recommendation assistant. Based on the \
user's question and the conversation so far, write 2-4 questions the USER would most \
likely ask the chatbot next.

Return JSON: {"suggestions": ["Question 1", "Question 2", "Question 3"]}

Every suggestion must be phrased as the user speaking to the chatbot:
- Good: "What cards offer the best cash back for groceries?"
- Good: "Show me cards with no foreign transaction fees"
- Bad: "What is your budget?" (a question FOR the user)
- Bad: "Do you travel often?" (a question FOR the user)

Keep each question under 15 words and about card features, use cases or benefits."""


# =============================================================================
# Formatting Helpers
# =============================================================================


def format_candidates(candidates: Sequence[CardEmbedding]) -> str:
    """Render candidates as ``n. Name | details | url`` lines.

    Example:
        >>> format_candidates([card])  # doctest: +SKIP
        '1. Chase Sapphire Preferred® | Annual fee: $95 | https://...'
    """
    lines = []
    for index, candidate in enumerate(candidates, start=1):
        details = card_to_text(candidate.record)
        lines.append(f"{index}. {candidate.name} | {details} | {candidate.apply_url}")
    return "\n".join(lines)


def build_messages(
    system_prompt: str,
    user_content: str,
    history: Sequence[dict[str, str]] = (),
) -> list[dict[str, str]]:
    """Assemble system prompt, prior turns and the current user message."""
    return [
        {"role": "system", "content": system_prompt},
        *history,
        {"role": "user", "content": user_content},
    ]
