"""
Periodic background jobs: the daily signal rebuild and the rogue-moderator sweep.
"""
