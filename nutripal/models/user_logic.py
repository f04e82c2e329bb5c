ACTIVITY_MULTIPLIERS = {
    "sedentary": 1.2,
    "lightly active": 1.375,
    "moderately active": 1.55,
    "very active": 1.725,
    "extra active": 1.9,
}

GOALS = ("lose", "maintain", "gain")

# protein g per kg body weight
PROTEIN_PER_KG = {"lose": 1.8, "maintain": 2.0, "gain": 2.2}

KCAL_PER_KG_FAT = 7700


def activity_from_workouts(workouts_per_week: int) -> str:
    if workouts_per_week <= 0:
        return "sedentary"
    if workouts_per_week <= 2:
        return "lightly active"
    if workouts_per_week <= 5:
        return "moderately active"
    return "very active"


class UserProfile:
    def __init__(self, sex, height_cm, age, weight_kg, activity_level="lightly active",
                 weekly_change_kg=0.5):
        if sex not in ("male", "female"):
            raise ValueError("Sex must be 'male' or 'female'.")
        if activity_level not in ACTIVITY_MULTIPLIERS:
            raise ValueError(f"Activity level must be one of: {', '.join(ACTIVITY_MULTIPLIERS)}.")
        self.sex = sex
        self.height_cm = float(height_cm)
        self.age = float(age)
        self.weight_kg = float(weight_kg)
        self.activity_level = activity_level
        self.weekly_change_kg = float(weekly_change_kg or 0)

    @classmethod
    def from_row(cls, row: dict) -> "UserProfile":
        """Build from a ``user_profiles`` row."""
        activity = row.get("activity_level") or activity_from_workouts(int(row.get("workouts_per_week") or 0))
        return cls(
            sex=(row.get("sex") or row.get("gender") or "").lower(),
            height_cm=row["height_cm"],
            age=row["age"],
            weight_kg=row["weight_kg"],
            activity_level=activity,
            weekly_change_kg=row.get("weekly_change_kg") or 0.5,
        )

    def tdee(self) -> float:
        """Mifflin-St Jeor BMR times the activity multiplier."""
        bmr = 10 * self.weight_kg + 6.25 * self.height_cm - 5 * self.age
        bmr += 5 if self.sex == "male" else -161
        return bmr * ACTIVITY_MULTIPLIERS[self.activity_level]

    def calorie_target(self, goal: str) -> float:
        if goal not in GOALS:
            raise ValueError(f"Goal must be one of: {', '.join(GOALS)}.")
        tdee = self.tdee()
        if goal == "lose":
            return tdee - self.weekly_change_kg * KCAL_PER_KG_FAT / 7
        if goal == "gain":
            return tdee * 1.10
        return tdee

    def recommended_goals(self, goal: str) -> dict:
        calories = self.calorie_target(goal)
        protein = PROTEIN_PER_KG[goal] * self.weight_kg
        fat = calories * (0.30 if goal == "gain" else 0.25) / 9
        carbs = max(0.0, (calories - protein * 4 - fat * 9) / 4)
        return {
            "calories": round(calories),
            "protein_g": round(protein, 1),
            "fat_total_g": round(fat, 1),
            "carbs_g": round(carbs, 1),
        }
