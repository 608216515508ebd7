"""Seed the default Lensmatch questionnaire.

Dimension questions share the default 40 / 30 / 20 / 10 split evenly inside
each dimension.  The region, budget and keyword questions are hard filters
and carry no weight.  Existing questions (by ``question_key``) are left
alone, so the script can be re-run after admins have edited content.

Choices and images are created without embeddings; run
``POST /api/v1/admin/embeddings/generate-all`` afterwards.
"""
import asyncio

from sqlalchemy import select

from lensmatch.database import dispose_engine, session_scope
from lensmatch.models.questionnaire import SurveyChoice, SurveyImage, SurveyQuestion


DEFAULT_QUESTIONS = [
    # ── style_emotion (40%) ─────────────────────────────────────────
    {
        "question_key": "mood_image",
        "question_title": "Which photo feels closest to the mood you want?",
        "question_type": "image_choice",
        "weight_category": "style_emotion",
        "base_weight": 0.20,
        "images": [
            ("warm_film", "Warm, grainy film tones with soft natural light",
             "/images/survey/warm_film.jpg"),
            ("clean_bright", "Clean, bright and airy with a white background",
             "/images/survey/clean_bright.jpg"),
            ("moody_dark", "Deep shadows and a dramatic, cinematic mood",
             "/images/survey/moody_dark.jpg"),
            ("vivid_street", "Vivid colours and candid street energy",
             "/images/survey/vivid_street.jpg"),
        ],
    },
    {
        "question_key": "color_tone",
        "question_title": "How should the colours in your photos feel?",
        "question_type": "single_choice",
        "weight_category": "style_emotion",
        "base_weight": 0.20,
        "choices": [
            ("muted", "Muted and calm, low saturation"),
            ("natural", "True to life, as the eye sees it"),
            ("vivid", "Rich and vivid, colours that pop"),
            ("monochrome", "Black and white"),
        ],
    },
    # ── communication_psychology (30%) ──────────────────────────────
    {
        "question_key": "direction_style",
        "question_title": "How much direction do you want during the shoot?",
        "question_type": "single_choice",
        "weight_category": "communication_psychology",
        "base_weight": 0.15,
        "choices": [
            ("detailed", "Detailed posing guidance for every shot"),
            ("light", "A few prompts, then let things flow"),
            ("none", "No direction, capture me as I am"),
        ],
    },
    {
        "question_key": "camera_comfort",
        "question_title": "How comfortable are you in front of a camera?",
        "question_type": "single_choice",
        "weight_category": "communication_psychology",
        "base_weight": 0.15,
        "choices": [
            ("nervous", "Nervous, I need time to relax"),
            ("okay", "Fine once we get going"),
            ("confident", "Confident, I enjoy being photographed"),
        ],
    },
    # ── purpose_story (20%) ─────────────────────────────────────────
    {
        "question_key": "occasion",
        "question_title": "What are these photos for?",
        "question_type": "single_choice",
        "weight_category": "purpose_story",
        "base_weight": 0.10,
        "choices": [
            ("profile", "A personal or professional profile"),
            ("anniversary", "An anniversary or milestone"),
            ("wedding", "A wedding or pre-wedding shoot"),
            ("family", "A family record"),
            ("portfolio", "A creative portfolio"),
        ],
    },
    {
        "question_key": "story",
        "question_title": "Tell us the story you want these photos to keep.",
        "question_description": "A few sentences are enough.",
        "question_type": "textarea",
        "weight_category": "purpose_story",
        "base_weight": 0.10,
    },
    # ── companion (10%) ─────────────────────────────────────────────
    {
        "question_key": "companion",
        "question_title": "Who will be in the photos with you?",
        "question_type": "multiple_choice",
        "weight_category": "companion",
        "base_weight": 0.10,
        "choices": [
            ("alone", "Just me"),
            ("partner", "My partner"),
            ("family", "Family"),
            ("friends", "Friends"),
            ("pet", "A pet"),
        ],
    },
    # ── hard filters ────────────────────────────────────────────────
    {
        "question_key": "region",
        "question_title": "Where would you like to shoot?",
        "question_type": "multiple_choice",
        "weight_category": "style_emotion",
        "base_weight": 0.0,
        "is_hard_filter": True,
        "choices": [
            ("seoul", "Seoul"),
            ("gyeonggi", "Gyeonggi"),
            ("incheon", "Incheon"),
            ("busan", "Busan"),
            ("jeju", "Jeju"),
        ],
    },
    {
        "question_key": "budget",
        "question_title": "What is your budget?",
        "question_type": "single_choice",
        "weight_category": "style_emotion",
        "base_weight": 0.0,
        "is_hard_filter": True,
        "choices": [
            ("-150000", "Up to 150,000"),
            ("150000-300000", "150,000 to 300,000"),
            ("300000-500000", "300,000 to 500,000"),
            ("500000-", "More than 500,000"),
        ],
    },
    {
        "question_key": "keywords",
        "question_title": "Pick the keywords that matter most to you.",
        "question_type": "multiple_choice",
        "weight_category": "style_emotion",
        "base_weight": 0.0,
        "is_hard_filter": True,
        "choices": [
            ("snapshot", "Snapshot"),
            ("outdoor", "Outdoor"),
            ("studio", "Studio"),
            ("night", "Night"),
            ("film", "Film"),
        ],
    },
]


async def seed():
    async with session_scope() as session:
        for order, q in enumerate(DEFAULT_QUESTIONS, start=1):
            existing = await session.execute(
                select(SurveyQuestion).where(SurveyQuestion.question_key == q["question_key"])
            )
            if existing.scalar_one_or_none() is not None:
                print(f"  Question {q['question_key']} already exists, skipping.")
                continue

            question = SurveyQuestion(
                question_key=q["question_key"],
                question_order=order,
                question_title=q["question_title"],
                question_description=q.get("question_description"),
                question_type=q["question_type"],
                weight_category=q["weight_category"],
                base_weight=q["base_weight"],
                is_hard_filter=q.get("is_hard_filter", False),
                is_active=True,
            )
            for i, (key, label) in enumerate(q.get("choices", [])):
                question.choices.append(
                    SurveyChoice(choice_key=key, choice_label=label, choice_order=i)
                )
            for i, (key, label, url) in enumerate(q.get("images", [])):
                question.images.append(
                    SurveyImage(image_key=key, image_label=label, image_url=url, image_order=i)
                )
            session.add(question)
            print(f"  Seeded question {order}: {q['question_key']} ({q['weight_category']})")
    await dispose_engine()
    print("Done seeding questions.")


if __name__ == "__main__":
    asyncio.run(seed())
