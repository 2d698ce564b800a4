"""camp-spine command-line interface (``camp-spine``)."""
