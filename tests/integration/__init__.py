# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Integration tests for the full analysis pipeline."""
