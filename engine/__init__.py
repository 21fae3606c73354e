"""Edge engine: domain model, grading, aggregation and fan-out."""
