from fedy.cli import main

main()
