"""End-to-end battle scenarios against scripted fakes."""
