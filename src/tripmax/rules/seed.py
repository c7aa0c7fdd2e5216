# tripmax/rules/seed.py
"""Default achievement definitions shipped with TripMax."""

from __future__ import annotations

from tripmax.rules.definitions import AchievementDefinition, achievement_from_dict

DEFAULT_ACHIEVEMENTS: list[dict] = [
    # --- Distance ---
    {
        "achievementCode": "DISTANCE_10KM",
        "name": "Marathon Starter",
        "description": "Complete a total distance of 10 kilometers across all tracks.",
        "iconUrl": "/icons/achievements/distance_10km.png",
        "category": "distance",
        "requirements": {"stat": "totalDistance", "value": 10_000},
        "rarity": "common",
    },
    {
        "achievementCode": "DISTANCE_100KM",
        "name": "Road Warrior",
        "description": "Complete a total distance of 100 kilometers across all tracks.",
        "iconUrl": "/icons/achievements/distance_100km.png",
        "category": "distance",
        "requirements": {"stat": "totalDistance", "value": 100_000},
        "rarity": "uncommon",
    },
    # --- Speed (m/s thresholds) ---
    {
        "achievementCode": "SPEED_100KPH",
        "name": "Speedster",
        "description": "Reach a maximum speed of 100 km/h on any track.",
        "iconUrl": "/icons/achievements/speed_100kph.png",
        "category": "speed",
        "requirements": {"trackCondition": "maxSpeed", "value": 27.78},
        "rarity": "common",
    },
    {
        "achievementCode": "SPEED_150KPH",
        "name": "Velocity King",
        "description": "Reach a maximum speed of 150 km/h on any track.",
        "iconUrl": "/icons/achievements/speed_150kph.png",
        "category": "speed",
        "requirements": {"trackCondition": "maxSpeed", "value": 41.67},
        "rarity": "uncommon",
    },
    # --- Frequency ---
    {
        "achievementCode": "TRACKS_10",
        "name": "Consistent Cruiser",
        "description": "Record 10 tracks.",
        "iconUrl": "/icons/achievements/tracks_10.png",
        "category": "frequency",
        "requirements": {"stat": "totalTracks", "value": 10},
        "rarity": "common",
    },
    {
        "achievementCode": "TRACKS_50",
        "name": "Dedicated Driver",
        "description": "Record 50 tracks.",
        "iconUrl": "/icons/achievements/tracks_50.png",
        "category": "frequency",
        "requirements": {"stat": "totalTracks", "value": 50},
        "rarity": "rare",
    },
]


def default_achievements() -> list[AchievementDefinition]:
    return [achievement_from_dict(d) for d in DEFAULT_ACHIEVEMENTS]
