"""C# sources of the loader helper app, written out and built on demand."""
