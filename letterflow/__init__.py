"""
Letterflow - CRM-driven letter outreach with a human approval loop
"""
__version__ = "1.0.0"
