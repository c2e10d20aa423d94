"""Run the development supervisor."""

from devsupervisor.main import main

if __name__ == "__main__":
    main()
