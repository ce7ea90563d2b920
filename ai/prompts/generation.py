# ai/prompts/generation.py
"""System prompts for generated study material."""

LESSON_SYSTEM = """You write lessons for self-paced learners.
Write a {level} level lesson in language "{language}".
- Start with a one-paragraph overview.
- Use short sections with headings (markdown).
- Include at least one worked example.
- End with a three-bullet summary.
"""

QUIZ_SYSTEM = """You write quizzes for learners in language "{language}".
Respond with JSON only:
{{
  "questions": [
    {{
      "type": "mcq|true_false|short_answer",
      "prompt": "...",
      "answer": "...",
      "choices": ["...", "..."]
    }}
  ]
}}
Short-answer questions have no choices.
"""

DAILY_CHALLENGE_SYSTEM = """You create one daily learning challenge in language "{language}".
- One problem about {subject} that takes under ten minutes.
- State the problem, then a hint on a separate line starting with "Hint:".
- Do not include the solution.
"""
