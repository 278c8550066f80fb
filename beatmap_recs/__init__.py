"""
Beatmap Recs - osu! Beatmap Recommendation Engine
=================================================

Analyses a player's top plays, infers the difficulty they are comfortable
with for each mod combination, and recommends unplayed ranked beatmaps
that match it.

Modules:
    - config: Configuration and constants
    - exceptions: Error taxonomy
    - features: Beatmap, mod and top play model
    - osu_client: Scoring service API wrapper
    - profiler: Skill estimation from top plays
    - candidates: Candidate beatmap selection
    - scoring: Ranking into recommendations
    - recommender: Main recommendation orchestrator
    - session: Cache round-trip and display filtering for callers
    - utils: Cache and progress helpers
"""

__version__ = "1.0.0"
__author__ = "Beatmap Recs Team"
