"""Storyshelf: AI-generated storybooks, memes and paper stories."""
