"""Field classification: taxonomy, encoders, pattern and learned classifiers, arbitration."""
