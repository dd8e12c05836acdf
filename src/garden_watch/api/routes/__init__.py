"""API route modules — subjects, reminders and client data views."""
