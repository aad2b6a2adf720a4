"""
Scoring for MCQ submissions.

All rounding is half-up so that 72.5 becomes 73, matching what clients compute.
"""
import math
from typing import Any, Dict, List, Sequence, Tuple


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percentage_of(correct: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(correct / total * 100)


def grade_for(percentage: int) -> str:
    for threshold, grade in ((90, "A+"), (80, "A"), (70, "B+"), (60, "B"), (50, "C"), (40, "D")):
        if percentage >= threshold:
            return grade
    return "F"


def difficulty_for(average_score: int) -> str:
    if average_score >= 80:
        return "Easy"
    if average_score >= 60:
        return "Medium"
    return "Hard"


def grade_answers(questions: Sequence[Dict[str, Any]], answers: Sequence[Dict[str, Any]]) -> Tuple[List[dict], int]:
    """
    Mark each answer against its question. Answers pointing outside the
    question list, and repeat answers to a question, are dropped. Returns the
    graded answers and the number correct.
    """
    graded = []
    correct = 0
    seen = set()
    for answer in answers:
        index = answer["question_index"]
        if not 0 <= index < len(questions) or index in seen:
            continue
        seen.add(index)
        is_correct = answer["selected_answer"] == questions[index]["correct_answer"]
        if is_correct:
            correct += 1
        graded.append({**answer, "is_correct": is_correct})
    return graded, correct


def next_statistics(statistics: Dict[str, Any], score: int) -> Dict[str, int]:
    """
    Fold one new score into the running statistics.

    The average is updated incrementally, ``round((avg * (n - 1) + score) / n)``,
    rather than recomputed from every submission.
    """
    attempts = int(statistics.get("total_attempts", 0)) + 1
    if attempts == 1:
        return {
            "total_attempts": 1,
            "average_score": score,
            "highest_score": score,
            "lowest_score": score,
        }
    average = int(statistics.get("average_score", 0))
    return {
        "total_attempts": attempts,
        "average_score": round_half_up((average * (attempts - 1) + score) / attempts),
        "highest_score": max(int(statistics.get("highest_score", 0)), score),
        "lowest_score": min(int(statistics.get("lowest_score", 0)), score),
    }


def class_statistics(submissions: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    if not submissions:
        return {
            "totalSubmissions": 0,
            "averageScore": 0,
            "highestScore": 0,
            "lowestScore": 0,
            "averageTimeTaken": 0,
        }
    scores = [s["score"] for s in submissions]
    times = [s.get("time_taken", 0) for s in submissions]
    return {
        "totalSubmissions": len(scores),
        "averageScore": round_half_up(sum(scores) / len(scores)),
        "highestScore": max(scores),
        "lowestScore": min(scores),
        "averageTimeTaken": round_half_up(sum(times) / len(times)),
    }


def format_duration(seconds: int) -> str:
    minutes, rest = divmod(int(seconds), 60)
    return f"{minutes}m {rest}s"


def detailed_analysis(score: int, correct: int, incorrect: int, total: int, time_taken: int) -> Dict[str, Any]:
    percentage = percentage_of(correct, total)
    return {
        "performance": {"score": score, "percentage": percentage, "grade": grade_for(percentage), "rank": None},
        "timing": {
            "totalTime": time_taken,
            "formattedTime": format_duration(time_taken),
            "averageTimePerQuestion": round_half_up(time_taken / total) if total else 0,
        },
        "accuracy": {"correct": correct, "incorrect": incorrect, "total": total, "accuracyRate": percentage},
    }
