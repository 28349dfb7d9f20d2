"""Log notation tokenizer, grammar and formatter."""
