"""Test package for the cognitive mini-games.

Engine tests drive each game with a fake clock. UI smoke tests run
headlessly using pygame's dummy video driver.
"""
