"""Garden Watch — behavioural-baseline and anomaly-detection engine for the garden owl."""
