"""Text-generation provider integration"""
