"""
Rights domain: models, pure status rules and the lifecycle engine.
"""
