import json
import os

from pydantic import ValidationError

from src.quiz.domain.models import Question
from src.quiz.domain.ports import IQuizRepository
from src.shared.telemetry import Telemetry

# --- Seeding Strategy ---
# The Seeder relies on the Repository to check for emptiness. `is_empty()` is
# not part of IQuizRepository; both adapters provide it and we duck-type here.
# ---------------------------------


class DataSeeder:
    """
    Responsible for populating an empty question bank from a JSON file.
    """

    def __init__(self, repo: IQuizRepository) -> None:
        self.repo = repo
        self.telemetry = Telemetry("DataSeeder")

    @staticmethod
    def load_file(seed_file: str) -> list[Question]:
        with open(seed_file, encoding="utf-8") as f:
            data = json.load(f)
        return [Question.model_validate(q) for q in data]

    def seed_if_empty(self, seed_file: str = "data/seed_questions.json") -> int:
        """
        Returns the number of questions written (0 if the bank already had data).
        """
        if hasattr(self.repo, "is_empty") and not self.repo.is_empty():
            return 0

        if not os.path.exists(seed_file):
            self.telemetry.log_warning("Seed file not found", path=seed_file)
            return 0

        self.telemetry.log_info("Question bank is empty. Seeding...", path=seed_file)
        try:
            questions = self.load_file(seed_file)
        except (ValidationError, json.JSONDecodeError) as e:
            self.telemetry.log_error("Seed file is invalid", e, path=seed_file)
            raise

        self.repo.seed_questions(questions)
        self.telemetry.log_info(f"Seeded {len(questions)} questions.")
        return len(questions)
