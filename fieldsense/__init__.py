"""Field semantic classification engine.

Assigns a semantic type (``first_name``, ``job_title``, ``salary_expected``
...) to a form input field from its surface attributes alone, by arbitrating
between a deterministic pattern classifier and a small online-trained
neural classifier.
"""

__version__ = "0.1.0"
