"""
Тесты пула OCR-воркеров.
"""
