"""Course enrollment and lesson completion."""

from __future__ import annotations

import math
import uuid
from typing import Any

import structlog

from eduverse.achievements.cascade import check_after_transition
from eduverse.aggregates import COURSES_PREFIX, DerivedAggregates
from eduverse.config import get_settings
from eduverse.models import COURSES, LESSONS, Course, Lesson
from eduverse.progression.xp_service import award_xp, get_player
from eduverse.schemas import CourseDetail, LessonSummary, TransitionResult
from eduverse.social.activity_service import record_activity
from eduverse.store.base import Contains, DocumentStore, Eq, OrderBy, Page, Query, iter_all
from eduverse.transitions import add_membership

logger = structlog.get_logger()


async def get_course(store: DocumentStore, course_id: str) -> Course:
    return Course.model_validate(await store.get(COURSES, course_id))


async def get_lesson(store: DocumentStore, lesson_id: str) -> Lesson:
    return Lesson.model_validate(await store.get(LESSONS, lesson_id))


async def get_course_detail(store: DocumentStore, course_id: str) -> CourseDetail:
    """A course with its lessons in ``order``."""
    course = await get_course(store, course_id)
    query = Query(LESSONS, filters={"course_id": Eq(course_id)}, order_by=[OrderBy("order")])
    lessons = [
        LessonSummary(id=doc["id"], title=doc["title"], order=doc["order"], xp_reward=doc["xp_reward"])
        async for doc in iter_all(store, query)
    ]
    return CourseDetail(
        **course.model_dump(exclude={"enrolled_students"}),
        enrolled=len(course.enrolled_students),
        lessons=lessons,
    )


async def create_course(
    store: DocumentStore,
    aggregates: DerivedAggregates,
    title: str,
    description: str = "",
    category: str = "general",
    difficulty: str = "beginner",
    tags: list[str] | None = None,
    xp_reward: int = 100,
    is_published: bool = True,
) -> Course:
    course = Course(
        id=uuid.uuid4().hex,
        title=title,
        description=description,
        category=category,
        difficulty=difficulty,
        tags=tags or [],
        xp_reward=xp_reward,
        is_published=is_published,
    )
    created = Course.model_validate(await store.insert(COURSES, course.model_dump(mode="json")))
    await aggregates.course_catalogue_changed()
    return created


async def create_lesson(
    store: DocumentStore,
    course_id: str,
    title: str,
    xp_reward: int = 10,
    order: int = 0,
) -> Lesson:
    await get_course(store, course_id)
    lesson = Lesson(id=uuid.uuid4().hex, course_id=course_id, title=title, xp_reward=xp_reward, order=order)
    return Lesson.model_validate(await store.insert(LESSONS, lesson.model_dump(mode="json")))


async def enroll_in_course(
    store: DocumentStore,
    aggregates: DerivedAggregates,
    player_id: str,
    course_id: str,
) -> TransitionResult:
    """Enroll the player. Raises ``DuplicateFact`` if already enrolled."""
    await get_player(store, player_id)
    course = await get_course(store, course_id)

    await add_membership(
        store, COURSES, course_id, "enrolled_students", player_id,
        what="enrolled in this course",
    )

    await record_activity(
        store,
        player_id,
        "course_enrolled",
        "Course Enrolled",
        f"You enrolled in {course.title}",
        {"course_id": course.id, "course_title": course.title},
    )
    await aggregates.course_membership_changed(course_id, player_id)
    logger.info("course_enrolled", player_id=player_id, course_id=course_id)
    return TransitionResult()


async def complete_lesson(
    store: DocumentStore,
    aggregates: DerivedAggregates,
    player_id: str,
    lesson_id: str,
) -> TransitionResult:
    """Mark a lesson completed and credit its XP once.

    Concurrent completions of the same lesson by the same player produce
    exactly one XP award and one activity; the rest raise ``DuplicateFact``.
    """
    await get_player(store, player_id)
    lesson = await get_lesson(store, lesson_id)

    await add_membership(
        store, LESSONS, lesson_id, "completed_by", player_id,
        what="completed this lesson",
    )

    award = await award_xp(store, player_id, lesson.xp_reward, source="lesson")
    await record_activity(
        store,
        player_id,
        "lesson_completed",
        "Lesson Completed",
        f"You completed {lesson.title}",
        {"lesson_id": lesson.id, "lesson_title": lesson.title, "xp": award.actual_amount},
    )
    await aggregates.player_progressed(player_id)
    logger.info("lesson_completed", player_id=player_id, lesson_id=lesson_id, xp=award.actual_amount)

    cascade = await check_after_transition(store, aggregates, player_id)
    new_level = cascade.new_level or award.new_level
    return TransitionResult(
        actual_xp_awarded=award.actual_amount,
        new_level=new_level,
        leveled_up=new_level > award.old_level,
        unlocked=[u.id for u in cascade.unlocked],
    )


async def search_courses(
    store: DocumentStore,
    aggregates: DerivedAggregates,
    category: str | None = None,
    difficulty: str | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict[str, Any]:
    """Published courses ordered by title. Cached per (filters, clamped window)."""
    window = Page.for_page(page, limit)
    page_number = window.offset // window.limit + 1
    cache_key = f"{COURSES_PREFIX}{category or 'all'}:{difficulty or 'all'}:{search or ''}:{page_number}:{window.limit}"

    filters: dict = {"is_published": Eq(True)}
    if category:
        filters["category"] = Eq(category)
    if difficulty:
        filters["difficulty"] = Eq(difficulty)
    if search:
        filters["title"] = Contains(search)
    query = Query(COURSES, filters=filters, order_by=[OrderBy("title")])

    async def load() -> dict[str, Any]:
        total = await store.count(query)
        docs = await store.query(query, window)
        courses = [Course.model_validate(doc) for doc in docs]
        return {
            "courses": [
                course.model_dump(mode="json", exclude={"enrolled_students"})
                | {"enrolled": len(course.enrolled_students)}
                for course in courses
            ],
            "pagination": {
                "page": page_number,
                "limit": window.limit,
                "total": total,
                "pages": math.ceil(total / window.limit),
            },
        }

    return await aggregates.read_through(cache_key, get_settings().course_cache_ttl_seconds, load)
