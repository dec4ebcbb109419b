"""KeyQuest progression and rewards API."""
