"""Story archetypes and the prompts built from them."""

from typing import Dict, Mapping, Optional


STORY_TYPES: Dict[str, Dict[str, object]] = {
    "against_the_odds": {
        "name": "Against the Odds",
        "description": "Difficult transactions, bidding wars, challenges overcome",
        "arc": "Challenge → Obstacles → Strategy → Victory",
        "questions": [
            "What was the initial challenge or obstacle your client faced?",
            "What made this situation particularly difficult or competitive?",
            "What strategy or approach did you take to overcome it?",
            "What was the outcome? How did it feel to win?",
            "What lesson or takeaway would you share with other buyers/sellers?",
        ],
    },
    "fresh_drop": {
        "name": "Fresh Drop",
        "description": "New listings, coming soon properties, market reveals",
        "arc": "Reveal → Features → Neighborhood → CTA",
        "questions": [
            "What makes this property special or unique?",
            "What are the top 3 features buyers will love?",
            "Describe the neighborhood and lifestyle it offers.",
            "Who is the ideal buyer for this home?",
            "What would you say to someone considering this property?",
        ],
    },
    "behind_the_deal": {
        "name": "Behind the Deal",
        "description": "Just closed, testimonials, success stories",
        "arc": "Surface → Hidden Challenge → Resolution → Lesson",
        "questions": [
            "Tell us about the client and their initial goals.",
            "What hidden challenge or surprise came up during the transaction?",
            "How did you navigate and resolve the challenge?",
            "What was the final outcome for your client?",
            "What insight would you share from this experience?",
        ],
    },
}


def detect_story_type_prompt(story_input: str) -> str:
    return f'''You are a real estate storytelling expert. Analyze this real estate story and determine which narrative archetype fits best.

Story Input:
"""
{story_input}
"""

Story Types:
1. AGAINST_THE_ODDS - Stories about overcoming challenges, bidding wars, difficult negotiations, or unlikely wins
2. FRESH_DROP - Stories about new listings, property reveals, or showcasing homes/neighborhoods
3. BEHIND_THE_DEAL - Stories about completed transactions, client success stories, or lessons learned

Analyze the story and respond with ONLY a JSON object:
{{
  "detected_type": "against_the_odds" | "fresh_drop" | "behind_the_deal",
  "confidence": 0.0-1.0,
  "reasoning": "Brief explanation of why this type fits"
}}'''


def generate_story_content_prompt(
    story_type: str,
    answers: Mapping[str, str],
    agent_name: str,
) -> Optional[str]:
    """Build the carousel prompt; None when ``story_type`` is unknown."""
    story = STORY_TYPES.get(story_type)
    if not story:
        return None

    answers_formatted = "\n\n".join(
        f"Q: {question}\nA: {answers.get(f'q{index}') or 'Not provided'}"
        for index, question in enumerate(story["questions"])
    )

    return f'''You are an expert real estate social media content creator. Create carousel content for this "{story['name']}" story.

Agent Name: {agent_name}
Story Type: {story['name']}
Narrative Arc: {story['arc']}

Story Details:
{answers_formatted}

Create carousel slide content following this structure:
- Slide 1: Hook (attention-grabbing opening, pose a question or bold statement)
- Slide 2: Setup (introduce the situation/property)
- Slide 3-5: Story beats (key moments following the {story['arc']} arc)
- Slide 6: Resolution/Outcome
- Slide 7: CTA (call-to-action, soft sell)

For each slide provide:
1. Headline (max 8 words, punchy)
2. Body text (max 40 words, conversational)
3. Visual suggestion (what image/graphic would work)

Respond with ONLY a JSON object:
{{
  "slides": [
    {{
      "headline": "...",
      "body": "...",
      "visual_suggestion": "..."
    }}
  ],
  "hashtags": ["#relevant", "#hashtags"],
  "caption": "Instagram caption for the carousel post (max 150 words)"
}}'''
