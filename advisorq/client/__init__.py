"""Client-side access to the advisor API"""
