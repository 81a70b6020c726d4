"""Core logic for tbd: records, ids, merging and git sync."""
